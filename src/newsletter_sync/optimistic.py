# SPDX-License-Identifier: MIT
"""Optimistic mutation executor.

Each mutation walks an explicit state machine::

    IDLE -> MUTATING -> IN_FLIGHT -> COMMITTED
                 \\             \\
                  +-> ROLLED_BACK <-+

MUTATING cancels conflicting refetches, snapshots the affected queries and
applies the speculative write. IN_FLIGHT runs the remote call. On success the
related queries are invalidated; on failure every snapshotted query is put
back exactly as it was and the error is re-raised.
"""

from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from .cache_sync import CacheSyncManager
from .enums import MutationState, OperationType
from .exceptions import MutationStateError
from .logging_config import get_detail_logger, get_status_logger
from .models import BatchResult, CachedQuery, Newsletter, QueryKey


T = TypeVar("T")

SpeculativeWrite = Callable[[CacheSyncManager], Any]
Reconciler = Callable[[CacheSyncManager, list[tuple[str, Any]]], Any]

_TRANSITIONS: Mapping[MutationState, frozenset[MutationState]] = {
    MutationState.IDLE: frozenset({MutationState.MUTATING}),
    MutationState.MUTATING: frozenset(
        {MutationState.IN_FLIGHT, MutationState.ROLLED_BACK}
    ),
    MutationState.IN_FLIGHT: frozenset(
        {MutationState.COMMITTED, MutationState.ROLLED_BACK}
    ),
    MutationState.COMMITTED: frozenset(),
    MutationState.ROLLED_BACK: frozenset(),
}


def replace_with_server_entities(
    sync_manager: CacheSyncManager, successes: list[tuple[str, Any]]
) -> None:
    """Default reconciler: write back the entities the server returned."""
    sync_manager.replace_entities_in_cache(
        result for _, result in successes if isinstance(result, Newsletter)
    )


@dataclass
class OptimisticMutation(Generic[T]):
    """Description of one optimistic mutation.

    Attributes:
        operation_type: Tag that selects the post-commit invalidation
        entity_ids: Ids of the entities the mutation touches
        apply: Speculative cache write
        remote_call: The real mutation against the gateway
        affected_keys: Keys to snapshot; defaults to every newsletter view
        on_success: Optional cache write with the server result, before
            invalidation
        reconcile: For batch mutations, re-applies the items that succeeded
            after a partial failure restored the snapshot
    """

    operation_type: OperationType | str
    entity_ids: list[str]
    apply: SpeculativeWrite
    remote_call: Callable[[], Awaitable[T]]
    affected_keys: Callable[[], Iterable[QueryKey]] | None = None
    on_success: Callable[[CacheSyncManager, T], Any] | None = None
    reconcile: Reconciler = replace_with_server_entities

    @property
    def label(self) -> str:
        operation = (
            self.operation_type.value
            if isinstance(self.operation_type, OperationType)
            else str(self.operation_type)
        )
        if len(self.entity_ids) == 1:
            return f"{operation} '{self.entity_ids[0]}'"
        return f"{operation} ({len(self.entity_ids)} items)"


@dataclass
class MutationRun(Generic[T]):
    """Runtime record of one mutation invocation."""

    mutation: OptimisticMutation[T]
    state: MutationState = MutationState.IDLE
    history: list[MutationState] = field(
        default_factory=lambda: [MutationState.IDLE]
    )
    snapshot: dict[QueryKey, CachedQuery | None] = field(default_factory=dict)
    result: T | None = None
    error: Exception | None = None

    def transition(self, new_state: MutationState) -> None:
        """Move to ``new_state``.

        Raises:
            MutationStateError: If the move is not allowed from the current state
        """
        if new_state not in _TRANSITIONS[self.state]:
            raise MutationStateError(
                f"Illegal transition {self.state.value} -> {new_state.value} "
                f"for {self.mutation.label}"
            )
        self.state = new_state
        self.history.append(new_state)

    @property
    def is_finished(self) -> bool:
        return self.state in (MutationState.COMMITTED, MutationState.ROLLED_BACK)


class OptimisticMutationExecutor:
    """Runs mutations through snapshot, speculative apply, then commit or rollback.

    There is no cross-mutation locking: two concurrent mutations of the same
    id resolve last-applied-wins in the cache, and the post-commit refetch
    brings the authoritative state. The executor never retries; that is the
    caller's decision.
    """

    def __init__(self, sync_manager: CacheSyncManager) -> None:
        self.sync_manager = sync_manager
        self.detail_logger = get_detail_logger()
        self.status_logger = get_status_logger()

    async def execute(self, mutation: OptimisticMutation[T]) -> T:
        """Run ``mutation`` to completion.

        Returns:
            The remote call's result

        Raises:
            Exception: Whatever the remote call raised, after rollback
        """
        run = self.prepare(mutation)
        await self.begin(run)
        return await self.dispatch(run)

    async def execute_batch(
        self, mutation: OptimisticMutation[BatchResult[Any]]
    ) -> BatchResult[Any]:
        """Run a bulk mutation whose remote call resolves to a ``BatchResult``.

        All items succeeded: commit. All failed: roll back. Mixed: restore the
        snapshot, re-apply only what the server confirmed, then commit so the
        views refetch. The batch outcome is returned in every case; only an
        exception from the remote call itself propagates.
        """
        run = self.prepare(mutation)
        await self.begin(run)
        run.transition(MutationState.IN_FLIGHT)

        try:
            result = await mutation.remote_call()
        except Exception as e:
            self.rollback(run, e)
            raise

        run.result = result
        if result.error_count == 0:
            self.commit(run)
        elif result.success_count == 0:
            self.sync_manager.restore(run.snapshot)
            run.transition(MutationState.ROLLED_BACK)
            self.status_logger.warning(
                f"Could not {mutation.label}: {result.summary()}"
            )
        else:
            self.sync_manager.restore(run.snapshot)
            successes = result.successful_items()
            mutation.reconcile(self.sync_manager, successes)
            self.commit(run, [entity_id for entity_id, _ in successes])
            self.status_logger.warning(
                f"{mutation.label} partially applied: {result.summary()}"
            )
        return result

    def prepare(self, mutation: OptimisticMutation[T]) -> MutationRun[T]:
        return MutationRun(mutation=mutation)

    async def begin(self, run: MutationRun[T]) -> None:
        """Enter MUTATING: cancel refetches, snapshot, apply the speculative write."""
        run.transition(MutationState.MUTATING)
        mutation = run.mutation

        # Cancel first so a late refetch cannot overwrite the speculative write
        await self.sync_manager.cancel_queries()

        keys = mutation.affected_keys() if mutation.affected_keys else None
        run.snapshot = self.sync_manager.snapshot(keys)
        self.detail_logger.debug(
            f"{mutation.label}: snapshot of {len(run.snapshot)} queries"
        )

        try:
            mutation.apply(self.sync_manager)
        except Exception as e:
            self.rollback(run, e)
            raise

    async def dispatch(self, run: MutationRun[T]) -> T:
        """Enter IN_FLIGHT and resolve to COMMITTED or ROLLED_BACK."""
        run.transition(MutationState.IN_FLIGHT)
        try:
            result = await run.mutation.remote_call()
        except Exception as e:
            self.rollback(run, e)
            raise

        run.result = result
        if run.mutation.on_success is not None:
            run.mutation.on_success(self.sync_manager, result)
        self.commit(run)
        return result

    def commit(
        self, run: MutationRun[Any], entity_ids: list[str] | None = None
    ) -> None:
        """Invalidate related queries; the speculative data stays until refetch.

        ``entity_ids`` narrows per-id invalidation to the items that went through.
        """
        self.sync_manager.invalidate_related_queries(
            run.mutation.entity_ids if entity_ids is None else entity_ids,
            run.mutation.operation_type,
        )
        run.transition(MutationState.COMMITTED)
        self.detail_logger.debug(f"{run.mutation.label}: committed")

    def rollback(self, run: MutationRun[Any], error: Exception) -> None:
        """Restore every snapshotted query exactly and record the error."""
        self.sync_manager.restore(run.snapshot)
        run.error = error
        run.transition(MutationState.ROLLED_BACK)
        self.status_logger.warning(f"Could not {run.mutation.label}: {error}")
