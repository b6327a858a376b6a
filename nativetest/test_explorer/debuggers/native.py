"""Debugger backend driving gdb, lldb or cdb as a child process."""

import asyncio
import logging
import re
import uuid
from collections.abc import Mapping

from nativetest.test_explorer.debuggers.base import (
    DebugBackend,
    DebugEvent,
    DebugSession,
    DebugSessionHandle,
)

logger = logging.getLogger(__name__)

GDB_TYPES = {"cppdbg", "gdb"}
LLDB_TYPES = {"lldb", "lldb-dap", "codelldb"}
CDB_TYPES = {"cppvsdbg", "cdb"}

# gdb prints the exit code in octal
_GDB_EXIT = re.compile(
    r"\[Inferior \d+ \(process \d+\) exited (?:normally|with code ([0-7]+))\]"
)
_LLDB_EXIT = re.compile(r"Process \d+ exited with status = (-?\d+)")


def debuggee_exit_code(debug_type: str, line: str) -> int | None:
    """Return the debuggee's exit code if ``line`` is the debugger's exit report.

    The debugger's own exit status says nothing about the program it ran,
    so the code is taken from its output. cdb reports are not recognised.
    """
    if debug_type in GDB_TYPES:
        match = _GDB_EXIT.search(line)
        if match:
            return int(match.group(1), 8) if match.group(1) else 0
    elif debug_type in LLDB_TYPES:
        match = _LLDB_EXIT.search(line)
        if match:
            return int(match.group(1))
    return None


def debugger_command(config: Mapping[str, object]) -> list[str]:
    """Build the batch-mode debugger command for a launch configuration.

    Raises:
        ValueError: If the debugger type is not supported

    """
    debug_type = str(config.get("type", ""))
    program = str(config["program"])
    raw_args = config.get("args") or []
    args = [str(arg) for arg in raw_args] if isinstance(raw_args, list) else []
    debugger_path = config.get("miDebuggerPath") or config.get("debuggerPath")

    if debug_type in GDB_TYPES:
        return [
            str(debugger_path or "gdb"),
            "-batch",
            "-ex",
            "run",
            "-ex",
            "bt",
            "--args",
            program,
            *args,
        ]
    elif debug_type in LLDB_TYPES:
        return [
            str(debugger_path or "lldb"),
            "--batch",
            "-o",
            "run",
            "-k",
            "bt",
            "--",
            program,
            *args,
        ]
    elif debug_type in CDB_TYPES:
        return [str(debugger_path or "cdb"), "-g", "-G", program, *args]
    raise ValueError(f"Unsupported debugger type: {debug_type}")


class NativeDebugBackend(DebugBackend):
    """Run the debuggee under a command-line debugger in batch mode."""

    def __init__(self) -> None:
        """Initialize backend with no running sessions."""
        super().__init__()
        self._processes: dict[str, asyncio.subprocess.Process] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    async def start_debugging(
        self, config: Mapping[str, object], handle: DebugSessionHandle
    ) -> bool:
        """Spawn the debugger and publish the ``started`` event."""
        try:
            command = debugger_command(config)
        except ValueError as e:
            logger.error(str(e))
            return False

        raw_env = config.get("env")
        env = dict(raw_env) if isinstance(raw_env, Mapping) else None
        cwd = config.get("cwd")

        logger.info(f"Starting debugger: {' '.join(command)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(cwd) if cwd else None,
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            logger.error(f"Failed to start debugger {command[0]}: {e}")
            return False

        session = DebugSession(
            id=uuid.uuid4().hex,
            name=str(config.get("name", "")),
            type=str(config.get("type", "")),
        )
        self._processes[session.id] = process
        handle.session = session
        self.publish(DebugEvent(kind="started", session=session))

        task = asyncio.create_task(self._pump(session, process, handle))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def stop_debugging(self, session: DebugSession) -> None:
        """Kill the debugger process of ``session``."""
        process = self._processes.get(session.id)
        if process is not None and process.returncode is None:
            logger.info(f"Stopping debug session {session.name}")
            process.kill()

    async def _pump(
        self,
        session: DebugSession,
        process: asyncio.subprocess.Process,
        handle: DebugSessionHandle,
    ) -> None:
        assert process.stdout is not None
        exit_code: int | None = None
        while True:
            line = await process.stdout.readline()
            if not line:
                break
            text = line.decode(errors="replace").rstrip("\r\n")
            logger.debug(f"[{session.name}] {text}")
            handle.output.append(text)
            reported = debuggee_exit_code(session.type, text)
            if reported is not None:
                exit_code = reported

        status = await process.wait()
        logger.info(f"Debugger for {session.name} exited with code {status}")
        self._processes.pop(session.id, None)
        self.publish(
            DebugEvent(kind="terminated", session=session, exit_code=exit_code)
        )
