"""Test orchestrator for discovering and running the tests of one profile."""

import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path

from nativetest.test_explorer.cancellation import CancellationToken
from nativetest.test_explorer.ctest_parser import CTestParser
from nativetest.test_explorer.inventory import (
    Inventory,
    TestItem,
    items_from_definitions,
    parse_test_list,
)
from nativetest.test_explorer.models.profile_config import (
    ConfigProfile,
    PassPolicy,
)
from nativetest.test_explorer.models.test_result import (
    ExecutionResult,
    RunState,
    TestOutcome,
)
from nativetest.test_explorer.runner import TestRunner, classify
from nativetest.test_explorer.template_resolver import has_unresolved

logger = logging.getLogger(__name__)


class RunReporter:
    """Receives the progress of a batch run.

    The default implementation logs and records ``(event, test_id)`` pairs;
    hosts override the hooks to drive their own display.
    """

    def __init__(self) -> None:
        """Initialize an empty event log."""
        self.events: list[tuple[str, str]] = []
        self.outputs: dict[str, str] = {}

    def enqueued(self, item: TestItem) -> None:
        """Item was queued."""
        self.events.append(("enqueued", item.id))

    def started(self, item: TestItem) -> None:
        """Item's process or debug session is being launched."""
        logger.info(f"Running {item.id}")
        self.events.append(("started", item.id))

    def output(self, item: TestItem, text: str) -> None:
        """Result text delivered for item."""
        self.outputs[item.id] = text

    def finished(self, item: TestItem, outcome: TestOutcome) -> None:
        """Item reached its final status."""
        if outcome.status in {"passed", "skipped"}:
            logger.info(f"Completed {item.id}: {outcome.status}")
        else:
            logger.error(f"Completed {item.id}: {outcome.status} {outcome.message}")
        self.events.append((outcome.status, item.id))

    def end(self) -> None:
        """The batch is over."""
        self.events.append(("end", ""))


class TestOrchestrator:
    """Discovers and runs the tests of a single profile."""

    __test__ = False

    def __init__(
        self,
        profile: ConfigProfile,
        runner: TestRunner | None = None,
        parser: CTestParser | None = None,
    ) -> None:
        """Initialize orchestrator for ``profile``."""
        self.profile = profile
        self.runner = runner or TestRunner(profile)
        self.parser = parser or CTestParser()

    async def discover(
        self, cancel_token: CancellationToken | None = None
    ) -> Inventory:
        """Build a fresh inventory for the profile.

        CMake profiles read CTest registration files; if that finds nothing
        and a list command is configured, the executable is queried
        instead. Other profiles always query the executable.
        """
        build_directory = self.profile.resolved_build_directory

        if self.profile.use_ctest_discovery:
            logger.info(f"Discovering CTest tests in {build_directory}")
            parsed = await self.parser.parse(
                Path(build_directory), self.profile.cmake_build_type
            )
            for error in parsed.errors:
                logger.warning(f"CTest discovery: {error}")
            if parsed.tests or self.profile.list_test_args() is None:
                return Inventory(
                    items=items_from_definitions(parsed.tests), errors=parsed.errors
                )

            logger.warning("CTest discovery found no tests, querying executable")
            inventory = await self._query_executable(build_directory, cancel_token)
            inventory.errors = parsed.errors + inventory.errors
            return inventory

        return await self._query_executable(build_directory, cancel_token)

    async def _query_executable(
        self, build_directory: str, cancel_token: CancellationToken | None
    ) -> Inventory:
        command = self.profile.list_test_args()
        if not command:
            return Inventory(errors=["No list command configured"])
        _warn_unresolved(command)

        result = await self.runner.run(
            command,
            build_directory,
            self.profile.list_result_mode,
            self.profile.resolved_result_file,
            cancel_token,
            lambda text, _: logger.debug(f"Test list output:\n{text}"),
        )
        if result.state != RunState.COMPLETED:
            return Inventory(errors=[result.text])

        return Inventory(items=parse_test_list(result.text, build_directory))

    async def run_tests(
        self,
        items: Sequence[TestItem],
        cancel_token: CancellationToken,
        reporter: RunReporter | None = None,
        debug: bool = False,
    ) -> list[TestOutcome]:
        """Run ``items`` one at a time, in the given order.

        Once ``cancel_token`` fires, tests that have not started are
        skipped without launching anything.
        """
        reporter = reporter or RunReporter()
        queue = list(items)
        for item in queue:
            reporter.enqueued(item)

        outcomes: list[TestOutcome] = []
        for item in queue:
            if cancel_token.is_cancellation_requested:
                outcome = TestOutcome(
                    test_id=item.id, status="skipped", message="Run cancelled"
                )
            elif item.definition is not None and item.definition.disabled:
                outcome = TestOutcome(
                    test_id=item.id, status="skipped", message="Test is disabled"
                )
            else:
                reporter.started(item)
                outcome = await self._run_single_test(
                    item, cancel_token, reporter, debug
                )
            reporter.finished(item, outcome)
            outcomes.append(outcome)

        reporter.end()
        return outcomes

    async def _run_single_test(
        self,
        item: TestItem,
        cancel_token: CancellationToken,
        reporter: RunReporter,
        debug: bool,
    ) -> TestOutcome:
        """Run one test and derive its outcome."""
        build_directory = self.profile.resolved_build_directory
        definition = item.definition

        if definition is not None and self.profile.use_ctest_discovery:
            command: list[str] | None = [definition.executable, *definition.args]
            working_directory = definition.working_directory or build_directory
            policy = (
                PassPolicy.EXIT_CODE
                if self.profile.ctest_use_exit_code
                else self.profile.pass_policy
            )
            timeout = definition.timeout or self.profile.test_timeout
            if definition.test_framework:
                logger.info(f"Running {definition.test_framework} test: {item.id}")
        else:
            command = self.profile.test_run_args(
                {
                    "test_full_name": item.id,
                    "test_suite_name": item.fixture,
                    "test_case_name": item.label,
                }
            )
            working_directory = build_directory
            policy = self.profile.pass_policy
            timeout = self.profile.test_timeout

        if not command:
            return TestOutcome(
                test_id=item.id, status="errored", message="No run command configured"
            )
        _warn_unresolved(command)

        loop = asyncio.get_event_loop()
        start_time = loop.time()
        result = await self.runner.run(
            command,
            working_directory,
            self.profile.test_run_result_mode,
            self.profile.resolved_result_file,
            cancel_token,
            lambda text, _: reporter.output(item, text),
            debug=debug,
            timeout=timeout,
        )
        duration = loop.time() - start_time

        if debug and policy == PassPolicy.EXIT_CODE and result.exit_code is None:
            # the debugger didn't report the program's exit code
            policy = PassPolicy.SUCCESS_PATTERN

        return self._outcome(item, result, policy, duration)

    def _outcome(
        self,
        item: TestItem,
        result: ExecutionResult,
        policy: PassPolicy,
        duration: float,
    ) -> TestOutcome:
        if result.state == RunState.CANCELLED:
            return TestOutcome(
                test_id=item.id,
                status="skipped",
                duration=duration,
                message="Cancelled while running",
                exit_code=result.exit_code,
            )
        if result.state == RunState.FAILED:
            return TestOutcome(
                test_id=item.id,
                status="errored",
                duration=duration,
                message=result.text,
                exit_code=result.exit_code,
            )

        if classify(result, policy, self.profile.result_success_regex):
            return TestOutcome(
                test_id=item.id,
                status="passed",
                duration=duration,
                exit_code=result.exit_code,
            )

        if policy == PassPolicy.EXIT_CODE:
            message = f"Test failed: exit code {result.exit_code}\n{result.text}"
        else:
            message = (
                f"Test failed: expected match for "
                f"{self.profile.result_success_regex!r}\n{result.text}"
            )
        return TestOutcome(
            test_id=item.id,
            status="failed",
            duration=duration,
            message=message,
            exit_code=result.exit_code,
        )


def _warn_unresolved(command: Sequence[str]) -> None:
    unresolved = [part for part in command if has_unresolved(part)]
    if unresolved:
        logger.warning(f"Unresolved placeholders in command: {unresolved}")
