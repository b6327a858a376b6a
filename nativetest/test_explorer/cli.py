"""CLI entry point for the native test explorer."""

import asyncio
import json
import logging
import signal
import sys
from pathlib import Path

import typer

from nativetest.test_explorer.cancellation import CancellationToken
from nativetest.test_explorer.config_loader import load_profiles
from nativetest.test_explorer.debuggers.launch_store import LaunchConfigurationStore
from nativetest.test_explorer.inventory import Inventory
from nativetest.test_explorer.models.profile_config import ConfigProfile, TargetType
from nativetest.test_explorer.models.test_result import TestOutcome
from nativetest.test_explorer.orchestrator import TestOrchestrator
from nativetest.test_explorer.runner import TestRunner

# Configure logging - force reconfiguration
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
    force=True,
)
logger = logging.getLogger(__name__)

app = typer.Typer()


def _load_profile(config: Path, target_type: str, workspace: Path) -> ConfigProfile:
    """Build the profile for ``target_type`` or exit with an error."""
    try:
        kind = TargetType(target_type.lower())
    except ValueError:
        typer.echo(
            f"Error: Unknown target type: {target_type}. "
            f"Must be one of: {', '.join(t.value for t in TargetType)}",
            err=True,
        )
        raise typer.Exit(code=1)

    try:
        profiles = asyncio.run(load_profiles(config, [kind], workspace.resolve()))
    except (FileNotFoundError, ValueError) as e:
        # ConfigurationError is a ValueError
        logger.error(f"Failed to load profile: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    return profiles[kind]


def _create_orchestrator(
    profile: ConfigProfile, launch_config: Path | None
) -> TestOrchestrator:
    launch_store = None
    if launch_config is not None:
        launch_store = LaunchConfigurationStore.from_file(launch_config)
    return TestOrchestrator(profile, TestRunner(profile, launch_store=launch_store))


def _inventory_json(inventory: Inventory) -> dict[str, object]:
    return {
        "total": len(inventory.items),
        "fixtures": {
            fixture: [
                {
                    "id": item.id,
                    "label": item.label,
                    "source_file": item.source_file,
                    "source_line": item.source_line,
                }
                for item in items
            ]
            for fixture, items in inventory.fixtures().items()
        },
        "errors": inventory.errors,
    }


@app.command("list")
def list_tests(
    config: Path = typer.Option(..., help="Path to the explorer settings YAML"),  # noqa: B008
    target_type: str = typer.Option(
        "cmake", help="Target type (primary, exe, bin, cmake)"
    ),
    workspace: Path = typer.Option(Path("."), help="Workspace folder"),  # noqa: B008
) -> None:
    """Discover tests and print the inventory as JSON."""
    profile = _load_profile(config, target_type, workspace)
    orchestrator = _create_orchestrator(profile, None)

    try:
        inventory = asyncio.run(orchestrator.discover())
    except Exception as e:
        logger.exception("Test discovery failed")
        typer.echo(f"Error discovering tests: {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo(json.dumps(_inventory_json(inventory), indent=2))


async def _discover_and_run(
    orchestrator: TestOrchestrator, tests: list[str], debug: bool
) -> tuple[Inventory, list[TestOutcome]]:
    cancel_token = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_token.cancel)
    except (NotImplementedError, RuntimeError):  # pragma: no cover
        logger.debug("Signal handlers unavailable, Ctrl+C will not cancel cleanly")

    inventory = await orchestrator.discover(cancel_token)
    items = inventory.select(tests) if tests else inventory.items
    outcomes = await orchestrator.run_tests(items, cancel_token, debug=debug)
    return inventory, outcomes


@app.command("run")
def run_tests(  # noqa: C901
    config: Path = typer.Option(..., help="Path to the explorer settings YAML"),  # noqa: B008
    target_type: str = typer.Option(
        "cmake", help="Target type (primary, exe, bin, cmake)"
    ),
    workspace: Path = typer.Option(Path("."), help="Workspace folder"),  # noqa: B008
    test: list[str] = typer.Option(  # noqa: B008
        [], help="Test or fixture id to run (repeatable, default: all)"
    ),
    debug: bool = typer.Option(False, help="Run tests under the debugger"),
    launch_config: Path | None = typer.Option(  # noqa: B008
        None, help="launch.json holding named debugger configurations"
    ),
) -> None:
    """Run tests one at a time and print the results as JSON."""
    logger.info("=" * 80)
    logger.info("Native Test Explorer - Starting")
    logger.info("=" * 80)
    logger.info(f"Settings: {config}")
    logger.info(f"Target type: {target_type}")
    logger.info(f"Workspace: {workspace}")

    profile = _load_profile(config, target_type, workspace)
    try:
        orchestrator = _create_orchestrator(profile, launch_config)
    except (FileNotFoundError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    try:
        inventory, results = asyncio.run(_discover_and_run(orchestrator, test, debug))
    except Exception as e:
        logger.exception("Test execution failed")
        typer.echo(f"Error running tests: {e}", err=True)
        raise typer.Exit(code=1)

    for error in inventory.errors:
        logger.warning(f"Discovery: {error}")

    if not results:
        typer.echo("No tests to run")
        return

    logger.info("=" * 80)
    logger.info("Test Results Summary:")
    logger.info("=" * 80)
    for result in results:
        if result.status in {"passed", "skipped"}:
            logger.info(
                f"✓ {result.test_id}: {result.status} ({result.duration:.2f}s)"
            )
        else:
            logger.error(f"✗ {result.test_id}: {result.status}")
            if result.message:
                logger.error(f"  Message: {result.message}")

    output = {
        "total": len(results),
        "passed": sum(1 for r in results if r.status == "passed"),
        "failed": sum(1 for r in results if r.status == "failed"),
        "errors": sum(1 for r in results if r.status == "errored"),
        "skipped": sum(1 for r in results if r.status == "skipped"),
        "results": [r.model_dump() for r in results],
    }

    typer.echo(json.dumps(output, indent=2))

    has_failures = any(r.status in {"failed", "errored"} for r in results)
    if has_failures:
        fail_count = sum(1 for r in results if r.status in {"failed", "errored"})
        logger.error(f"Tests failed: {fail_count}/{len(results)}")
        raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover
    app()
