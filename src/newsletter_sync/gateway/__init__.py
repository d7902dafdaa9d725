# SPDX-License-Identifier: MIT
"""Remote data gateways."""

from .memory import InMemoryGateway
from .postgrest import PostgrestGateway
from .protocols import ENTITY_MODELS, RemoteDataGateway, entity_model_for


__all__ = [
    "ENTITY_MODELS",
    "InMemoryGateway",
    "PostgrestGateway",
    "RemoteDataGateway",
    "entity_model_for",
]
