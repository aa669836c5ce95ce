from __future__ import annotations

import asyncio
import logging
import os
import signal
from typing import Sequence

from gocars_batch.executors.base import CommandOutcome, ExecutionContext
from gocars_batch.models import CommandExecutionError
from gocars_batch.utils import truncate_text

_log = logging.getLogger("gocars_batch.executors.process")


class SubprocessExecutor:
    """Run each command as its own OS process.

    stdout and stderr are merged and captured. If the awaiting task is
    cancelled (deadline exceeded) the whole process group is terminated.
    """

    name = "process"
    _KILL_GRACE_SEC = 0.5

    def __init__(self, *, output_limit: int = 8000):
        if output_limit <= 0:
            raise ValueError("output_limit must be > 0")
        self.output_limit = output_limit

    def _signal_process_tree(
        self, process: asyncio.subprocess.Process, signum: int
    ) -> None:
        if process.returncode is not None:
            return

        if os.name == "posix":
            try:
                pgid = os.getpgid(process.pid)
                os.killpg(pgid, signum)
                return
            except ProcessLookupError:
                return
            except OSError:
                pass

        try:
            process.send_signal(signum)
        except ProcessLookupError:
            return

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        self._signal_process_tree(process, signal.SIGTERM)
        try:
            await asyncio.wait_for(process.wait(), timeout=self._KILL_GRACE_SEC)
            return
        except asyncio.TimeoutError:
            pass
        self._signal_process_tree(process, signal.SIGKILL)
        try:
            await asyncio.wait_for(process.wait(), timeout=self._KILL_GRACE_SEC)
        except asyncio.TimeoutError:
            _log.warning("process_kill_timeout pid=%s", process.pid)

    async def run(
        self, argv: Sequence[str], context: ExecutionContext
    ) -> CommandOutcome:
        if not argv:
            raise CommandExecutionError("cannot execute an empty command")
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(context.cwd),
                env=dict(context.env),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=os.name == "posix",
            )
        except OSError as exc:
            raise CommandExecutionError(
                f"failed to spawn process for {argv[0]!r}: {exc}"
            ) from exc

        _log.debug("process_start pid=%s argv=%s cwd=%s", process.pid, list(argv), context.cwd)
        try:
            stdout, _ = await process.communicate()
        except asyncio.CancelledError:
            await self._terminate(process)
            raise

        exit_code = process.returncode if process.returncode is not None else 1
        output = stdout.decode("utf-8", errors="replace") if stdout else ""
        _log.debug("process_end pid=%s exit_code=%s", process.pid, exit_code)
        error: str | None = None
        if exit_code < 0:
            error = f"terminated by signal {-exit_code}"
        return CommandOutcome(
            exit_code=exit_code,
            output=truncate_text(output, limit=self.output_limit) or "",
            error=error,
        )
