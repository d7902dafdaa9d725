# SPDX-License-Identifier: MIT
"""Command-line interface for the newsletter synchronization layer."""

import asyncio
import functools
import json
import sys
import traceback
from collections.abc import Callable
from typing import Any, TypeVar

import click
import yaml

from . import __version__, query_keys
from .actions import NewsletterActions
from .batch_updater import BatchUpdateCoordinator
from .cache_sync import CacheSyncManager
from .config import BatchSettings, get_config_manager
from .constants import DEFAULT_OUTPUT_FORMAT
from .enums import EntityType
from .exceptions import NetworkError, SyncError
from .gateway import InMemoryGateway, PostgrestGateway
from .logging_config import get_status_logger, setup_logging
from .models import BatchResult, Newsletter
from .query_cache import QueryCacheStore


F = TypeVar("F", bound=Callable[..., Any])


def handle_cli_errors(func: F) -> F:
    """Decorator to handle common CLI error patterns.

    Logs the error through the status logger (with a traceback when
    ``--verbose`` is set) and exits with status code 1.
    """

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        status_logger = get_status_logger()
        verbose = kwargs.get("verbose", False)

        try:
            return func(*args, **kwargs)
        except (SyncError, ValueError, OSError) as e:
            if verbose:
                status_logger.error(f"Error in {func.__name__}: {e}")
                traceback.print_exc()
            else:
                status_logger.error(f"Error: {e}")
            sys.exit(1)

    return wrapper  # type: ignore


def print_version(ctx: click.Context, param: click.Parameter, value: bool) -> None:
    """Print version and exit if requested."""
    if value:
        click.echo(f"newsletter-sync version {__version__}")
        ctx.exit(0)


def parse_assignments(assignments: tuple[str, ...]) -> dict[str, Any]:
    """Turn ``field=value`` pairs into an update payload.

    Values are parsed as YAML scalars, so ``is_read=true`` gives a boolean.

    Raises:
        click.BadParameter: If a pair has no ``=`` or an empty field name
    """
    updates: dict[str, Any] = {}
    for assignment in assignments:
        field_name, sep, raw_value = assignment.partition("=")
        if not sep or not field_name.strip():
            raise click.BadParameter(
                f"expected field=value, got {assignment!r}", param_hint="--set"
            )
        updates[field_name.strip()] = yaml.safe_load(raw_value)
    return updates


def format_batch_result(result: BatchResult[Any], output_format: str) -> str:
    """Render a batch outcome for the terminal."""
    rows = [
        {
            "id": entity_id,
            "status": "ok" if error is None else "failed",
            "error": None if error is None else str(error),
        }
        for entity_id, error in zip(result.ids, result.errors)
    ]
    if output_format == "json":
        return json.dumps(
            {
                "success_count": result.success_count,
                "error_count": result.error_count,
                "items": rows,
            },
            indent=2,
        )

    lines = [
        f"{row['id']}: {row['status']}" + (f" ({row['error']})" if row["error"] else "")
        for row in rows
    ]
    lines.append(result.summary())
    return "\n".join(lines)


@click.group()
@click.option(
    "--version",
    is_flag=True,
    callback=print_version,
    expose_value=False,
    is_eager=True,
    help="Show version information and exit",
)
def main() -> None:
    """newsletter-sync - Keep cached newsletter views consistent under optimistic and bulk updates."""
    detail_logger, _ = setup_logging()
    detail_logger.debug("CLI initialized")


@main.command()
@handle_cli_errors
def config() -> None:
    """Show the complete current configuration."""
    print(get_config_manager().show_config())


@main.command(name="bulk-update")
@click.argument("ids", nargs=-1, required=True)
@click.option(
    "--set",
    "assignments",
    multiple=True,
    required=True,
    help="Field assignment, e.g. --set is_read=true (repeatable)",
)
@click.option(
    "--format",
    "output_format",
    default=DEFAULT_OUTPUT_FORMAT,
    type=click.Choice(["text", "json"]),
    help="Output format",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@handle_cli_errors
def bulk_update(
    ids: tuple[str, ...], assignments: tuple[str, ...], output_format: str, verbose: bool
) -> None:
    """Apply one update to many newsletters through the configured gateway.

    IDS: Newsletter ids to update

    Exits with status 1 if any id failed.
    """
    updates = parse_assignments(assignments)
    app_config = get_config_manager().load_config()
    gateway = PostgrestGateway(app_config.gateway)
    coordinator = BatchUpdateCoordinator(gateway, app_config.batch, EntityType.NEWSLETTERS)

    def report_progress(completed: int, total: int, batch_number: int) -> None:
        get_status_logger().info(f"Batch {batch_number}: {completed}/{total}")

    result = asyncio.run(coordinator.bulk_update(list(ids), updates, report_progress))
    print(format_batch_result(result, output_format))
    if result.error_count:
        sys.exit(1)


@main.command()
@click.option(
    "--format",
    "output_format",
    default=DEFAULT_OUTPUT_FORMAT,
    type=click.Choice(["text", "json"]),
    help="Output format",
)
@handle_cli_errors
def demo(output_format: str) -> None:
    """Run the rollback and partial-batch scenarios against an in-memory gateway."""
    report = asyncio.run(_run_demo())
    if output_format == "json":
        print(json.dumps(report, indent=2))
        return

    rollback = report["rollback"]
    print("Optimistic mark-read with a failing gateway:")
    for label, flags in (
        ("during call", rollback["optimistic"]),
        ("after rollback", rollback["final"]),
    ):
        print(f"  {label + ':':<16}list={flags['list']} detail={flags['detail']}")
    print(f"  error:          {rollback['error']}")
    print("Bulk mark-read in chunks of 2, chunk 2 always failing:")
    for item in report["batch"]["items"]:
        print(f"  {item['id']}: {item['status']}")
    print(f"  {report['batch']['summary']}")


async def _run_demo() -> dict[str, Any]:
    return {
        "rollback": await _demo_rollback(),
        "batch": await _demo_partial_batch(),
    }


async def _demo_rollback() -> dict[str, Any]:
    newsletter = Newsletter(id="x", title="Weekly digest", is_read=False)
    gateway = InMemoryGateway({EntityType.NEWSLETTERS.value: [newsletter]})
    store = QueryCacheStore()
    sync_manager = CacheSyncManager(store)
    actions = NewsletterActions(gateway, sync_manager)

    list_key = query_keys.newsletter_list()
    detail_key = query_keys.newsletter_detail("x")
    store.set(list_key, [newsletter])
    store.set(detail_key, newsletter)

    def read_flags() -> dict[str, bool]:
        return {
            "list": store.get_data(list_key)[0].is_read,
            "detail": store.get_data(detail_key).is_read,
        }

    observed: dict[str, Any] = {}

    def capture_optimistic(key: Any, entry: Any) -> None:
        # Lists are rewritten before details, so both show the speculative value
        if not observed and key == detail_key and entry is not None:
            observed.update(read_flags())

    store.add_listener(capture_optimistic)
    gateway.fail_next("update", NetworkError("simulated outage"))

    try:
        await actions.mark_read("x")
    except NetworkError as e:
        error = str(e)
    else:
        error = None

    return {"optimistic": observed, "final": read_flags(), "error": error}


async def _demo_partial_batch() -> dict[str, Any]:
    ids = ["a", "b", "c", "d", "e"]
    gateway = InMemoryGateway(
        {EntityType.NEWSLETTERS.value: [Newsletter(id=entity_id) for entity_id in ids]}
    )
    gateway.fail_on_ids(["c"], NetworkError("chunk rejected"))
    settings = BatchSettings(
        max_batch_size=2, batch_delay_seconds=0.0, max_retries=2, retry_delay_seconds=0.0
    )
    actions = NewsletterActions(
        gateway, CacheSyncManager(QueryCacheStore()), batch_settings=settings
    )

    result = await actions.bulk_mark_read(ids)
    return {
        "items": [
            {"id": entity_id, "status": "ok" if error is None else "failed"}
            for entity_id, error in zip(result.ids, result.errors)
        ],
        "summary": result.summary(),
        "bulk_update_calls": gateway.call_count("bulk_update"),
    }


if __name__ == "__main__":
    main()
