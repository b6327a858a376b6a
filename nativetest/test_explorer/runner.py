"""Run a test binary directly or under a debugger and deliver its result."""

import asyncio
import logging
import os
import re
import shutil
import sys
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

from nativetest.test_explorer.cancellation import CancellationToken
from nativetest.test_explorer.debuggers.base import DebugBackend, DebugSessionHandle
from nativetest.test_explorer.debuggers.launch_store import LaunchConfigurationStore
from nativetest.test_explorer.debuggers.native import NativeDebugBackend
from nativetest.test_explorer.models.profile_config import (
    ConfigProfile,
    PassPolicy,
    ResultMode,
)
from nativetest.test_explorer.models.test_result import ExecutionResult, RunState
from nativetest.test_explorer.template_resolver import normalize_separators

logger = logging.getLogger(__name__)

OnResult = Callable[[str, int | None], None]

RESULT_FILE_POLL_INTERVAL = 0.1
STOP_GRACE_PERIOD = 5.0


def library_path_variable(
    env: Mapping[str, str], platform: str = sys.platform
) -> tuple[str, str]:
    """Return the dynamic-library search variable and its list separator."""
    if platform == "win32":
        for key in env:
            if key.lower() == "path":
                return key, ";"
        return "PATH", ";"
    if platform == "darwin":
        return "DYLD_LIBRARY_PATH", ":"
    return "LD_LIBRARY_PATH", ":"


def build_library_env(
    lib_paths: Sequence[str],
    base_env: Mapping[str, str] | None = None,
    platform: str = sys.platform,
) -> dict[str, str]:
    """Clone the environment with ``lib_paths`` prepended to the loader path.

    The inherited environment is never modified.

    Args:
        lib_paths: Directories to search first; entries may themselves be
            ``;``-separated lists
        base_env: Environment to clone (defaults to ``os.environ``)
        platform: Target platform, selects PATH / LD_LIBRARY_PATH /
            DYLD_LIBRARY_PATH

    Returns:
        New environment mapping

    """
    env = dict(os.environ if base_env is None else base_env)
    entries = [entry for path in lib_paths for entry in path.split(";") if entry]
    if not entries:
        return env

    key, separator = library_path_variable(env, platform)
    value = separator.join(entries)
    current = env.get(key, "")
    env[key] = value + (separator + current if current else "")
    return env


def classify(result: ExecutionResult, policy: PassPolicy, success_regex: str) -> bool:
    """Derive pass/fail from ``result`` using the profile's declared policy."""
    if policy == PassPolicy.EXIT_CODE:
        return result.exit_code == 0
    return re.search(success_regex, result.text) is not None


class ResultChannel:
    """Single-shot delivery of one run's result to its callback."""

    def __init__(self, on_result: OnResult) -> None:
        """Initialize channel for ``on_result``."""
        self._on_result = on_result
        self._future: asyncio.Future[ExecutionResult] = (
            asyncio.get_event_loop().create_future()
        )

    @property
    def delivered(self) -> bool:
        """Whether a result has been delivered."""
        return self._future.done()

    def deliver(self, result: ExecutionResult) -> None:
        """Pass ``result`` to the callback unless one was already delivered."""
        if self._future.done():
            logger.warning("Result already delivered, ignoring second result")
            return
        self._future.set_result(result)
        self._on_result(result.text, result.exit_code)

    async def wait(self) -> ExecutionResult:
        """Wait for the delivered result."""
        return await self._future


class TestRunner:
    """Launch one test command and collect its result."""

    __test__ = False

    def __init__(
        self,
        profile: ConfigProfile,
        debug_backend: DebugBackend | None = None,
        launch_store: LaunchConfigurationStore | None = None,
        result_file_timeout: float = 0.5,
    ) -> None:
        """Initialize runner for ``profile``."""
        self.profile = profile
        self.debug_backend = debug_backend
        self.launch_store = launch_store or LaunchConfigurationStore()
        self.result_file_timeout = result_file_timeout
        self.state = RunState.IDLE

    async def run(
        self,
        command_line: Sequence[str],
        working_directory: str,
        result_mode: ResultMode,
        result_target: str | None,
        cancel_token: CancellationToken | None,
        on_result: OnResult,
        debug: bool = False,
        timeout: float | None = None,
    ) -> ExecutionResult:
        """Run ``command_line`` and deliver the result to ``on_result``.

        ``on_result`` is called exactly once, with a diagnostic message
        instead of test output when the run cannot be carried out.

        Args:
            command_line: Executable followed by its arguments
            working_directory: Directory the process runs in
            result_mode: Whether the result is captured output or a file
            result_target: Result file path for file mode
            cancel_token: Cancels the running process or session
            on_result: Callback receiving ``(text, exit_code)``
            debug: Run under the configured debugger
            timeout: Seconds before the run is stopped

        Returns:
            The delivered execution result

        """
        channel = ResultChannel(on_result)
        self._transition(RunState.LAUNCHING)
        try:
            result = await self._execute(
                command_line,
                working_directory,
                result_mode,
                result_target,
                cancel_token,
                debug,
                timeout,
            )
        except asyncio.CancelledError:
            self._transition(RunState.CANCELLED)
            channel.deliver(
                ExecutionResult(text="Run was cancelled", state=RunState.CANCELLED)
            )
            raise
        except Exception as e:
            logger.exception("Test run failed")
            result = self._failure(f"Test run failed: {e}")

        self._transition(result.state)
        channel.deliver(result)
        return result

    async def _execute(
        self,
        command_line: Sequence[str],
        working_directory: str,
        result_mode: ResultMode,
        result_target: str | None,
        cancel_token: CancellationToken | None,
        debug: bool,
        timeout: float | None,
    ) -> ExecutionResult:
        if not command_line:
            return self._failure("Empty command line")

        executable = normalize_separators(command_line[0], self.profile.platform)
        args = list(command_line[1:])

        if self.profile.use_cmake_target:
            if self.profile.session is None:
                return self._failure("CMake project is not initialized.")
        else:
            located = self._locate_executable(executable, working_directory)
            if located is None:
                return self._failure(f"Test target file does not exist: {executable}")
            executable = located

        env = build_library_env(
            self.profile.resolved_lib_paths, platform=self.profile.platform
        )

        if result_mode == ResultMode.RESULT_FILE and result_target:
            _remove_stale_result(Path(result_target))

        if debug:
            return await self._run_debug(
                executable,
                args,
                working_directory,
                env,
                result_mode,
                result_target,
                cancel_token,
                timeout,
            )
        return await self._run_direct(
            executable,
            args,
            working_directory,
            env,
            result_mode,
            result_target,
            cancel_token,
            timeout,
        )

    async def _run_direct(
        self,
        executable: str,
        args: list[str],
        working_directory: str,
        env: dict[str, str],
        result_mode: ResultMode,
        result_target: str | None,
        cancel_token: CancellationToken | None,
        timeout: float | None,
    ) -> ExecutionResult:
        logger.info(f"Running: {executable} {' '.join(args)}")
        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *args,
                cwd=working_directory or None,
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            return self._failure(f"Failed to start {executable}: {e}")

        self._transition(RunState.RUNNING)
        lines: list[str] = []
        reader = asyncio.create_task(
            _read_lines(process, lines, result_mode == ResultMode.RESULT_FILE)
        )
        finished = asyncio.create_task(_wait_for_exit(process, reader))
        try:
            interrupted = await _wait_or_cancel(finished, cancel_token, timeout)
        except asyncio.CancelledError:
            _kill(process)
            finished.cancel()
            reader.cancel()
            raise
        if interrupted:
            logger.info(f"Run {interrupted}, terminating {executable}")
            _kill(process)
            try:
                await asyncio.wait_for(finished, STOP_GRACE_PERIOD)
            except asyncio.TimeoutError:
                logger.warning(f"Output of {executable} still open after kill")
                reader.cancel()

        exit_code = await process.wait()
        logger.info(f"Test executable exited with code {exit_code}")

        return await self._collect(
            lines, exit_code, result_mode, result_target, interrupted, timeout
        )

    async def _run_debug(
        self,
        executable: str,
        args: list[str],
        working_directory: str,
        env: dict[str, str],
        result_mode: ResultMode,
        result_target: str | None,
        cancel_token: CancellationToken | None,
        timeout: float | None,
    ) -> ExecutionResult:
        if self.debug_backend is None:
            self.debug_backend = NativeDebugBackend()
        backend = self.debug_backend

        config = self.launch_store.build_launch_config(
            self.profile.debug_config_name,
            executable,
            args,
            working_directory,
            env,
            platform=self.profile.platform,
        )
        handle = DebugSessionHandle(name=str(config["name"]), type=str(config["type"]))
        events = backend.subscribe()
        try:
            if not await backend.start_debugging(config, handle):
                return self._failure("Failed to start debugging session.")

            self._transition(RunState.RUNNING)
            waiter = asyncio.create_task(backend.wait_for_termination(handle, events))
            interrupted = await _wait_or_cancel(waiter, cancel_token, timeout)
            if interrupted:
                logger.info(f"Debug run {interrupted}, stopping session")
                if handle.session is not None:
                    await backend.stop_debugging(handle.session)
                try:
                    await asyncio.wait_for(asyncio.shield(waiter), STOP_GRACE_PERIOD)
                except asyncio.TimeoutError:
                    waiter.cancel()

            exit_code = None
            if waiter.done() and not waiter.cancelled() and not waiter.exception():
                exit_code = waiter.result().exit_code

            return await self._collect(
                list(handle.output),
                exit_code,
                result_mode,
                result_target,
                interrupted,
                timeout,
            )
        finally:
            backend.unsubscribe(events)
            handle.clear()

    async def _collect(
        self,
        lines: list[str],
        exit_code: int | None,
        result_mode: ResultMode,
        result_target: str | None,
        interrupted: str | None,
        timeout: float | None,
    ) -> ExecutionResult:
        self._transition(RunState.COLLECTING)

        if interrupted == "cancelled":
            state = RunState.CANCELLED
        elif interrupted == "timed out":
            state = RunState.FAILED
        else:
            state = RunState.COMPLETED

        if result_mode == ResultMode.CAPTURED_OUTPUT:
            text = "\n".join(lines)
        else:
            text, found = await self._read_result_file(result_target, exit_code)
            if not found and state == RunState.COMPLETED:
                state = RunState.FAILED

        if interrupted == "timed out":
            note = f"Test timed out after {timeout} seconds"
            text = f"{text}\n{note}" if text else note

        return ExecutionResult(text=text, exit_code=exit_code, state=state)

    async def _read_result_file(
        self, result_target: str | None, exit_code: int | None
    ) -> tuple[str, bool]:
        code = "unknown" if exit_code is None else str(exit_code)
        if not result_target:
            return f"No result file configured (exit code {code})", False

        path = Path(result_target)
        loop = asyncio.get_event_loop()
        deadline = loop.time() + self.result_file_timeout
        while not path.exists() and loop.time() < deadline:
            await asyncio.sleep(RESULT_FILE_POLL_INTERVAL)

        if not path.exists():
            logger.error(f"Result file not found: {path}")
            return f"Result file {path} not found (exit code {code})", False

        try:
            return path.read_text(encoding="utf-8", errors="replace"), True
        except OSError as e:
            logger.error(f"Error reading result file {path}: {e}")
            return f"Error reading result file {path}: {e} (exit code {code})", False

    def _locate_executable(self, executable: str, working_directory: str) -> str | None:
        path = Path(executable)
        if path.is_absolute():
            return executable if path.exists() else None

        for base in (working_directory, self.profile.resolved_build_directory):
            if base and (Path(base) / path).exists():
                return str(Path(base) / path)

        if path.exists():
            return executable
        return shutil.which(executable)

    def _failure(self, message: str) -> ExecutionResult:
        logger.error(message)
        return ExecutionResult(text=message, state=RunState.FAILED)

    def _transition(self, state: RunState) -> None:
        logger.debug(f"Run state: {self.state.value} -> {state.value}")
        self.state = state


def _kill(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        pass


def _remove_stale_result(path: Path) -> None:
    """Delete a result file left over from an earlier run."""
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not remove stale result file {path}: {e}")


async def _read_lines(
    process: asyncio.subprocess.Process, lines: list[str], log_only: bool
) -> None:
    """Stream the process output, logging or buffering each line."""
    assert process.stdout is not None
    while True:
        raw = await process.stdout.readline()
        if not raw:
            break
        line = raw.decode(errors="replace").rstrip("\r\n")
        if log_only:
            logger.info(f"stdout: {line}")
        else:
            lines.append(line)


async def _wait_for_exit(
    process: asyncio.subprocess.Process, reader: "asyncio.Task[None]"
) -> int:
    """Wait until the output is drained and the process has exited."""
    await reader
    return await process.wait()


async def _wait_or_cancel(
    task: "asyncio.Task[object]",
    cancel_token: CancellationToken | None,
    timeout: float | None,
) -> str | None:
    """Wait for ``task``; return why it was interrupted, or None."""
    waiters: set[asyncio.Future[object]] = {task}
    cancel_waiter = None
    if cancel_token is not None:
        cancel_waiter = asyncio.ensure_future(cancel_token.wait())
        waiters.add(cancel_waiter)
    try:
        done, _ = await asyncio.wait(
            waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()

    if task in done:
        return None
    if cancel_token is not None and cancel_token.is_cancellation_requested:
        return "cancelled"
    return "timed out"
