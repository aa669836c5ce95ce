from __future__ import annotations

import asyncio
import logging
from typing import Callable, Sequence

from gocars_batch.executors.base import CommandOutcome, ExecutionContext

_log = logging.getLogger("gocars_batch.executors.dispatch")

DispatchFn = Callable[[Sequence[str], ExecutionContext], int]


class CliExecutor:
    """Run batch commands as invocations of this CLI, in-process.

    Each invocation runs on a worker thread so a nested ``batch run`` can
    start its own event loop.
    """

    name = "cli"

    def __init__(self, dispatch: DispatchFn):
        self._dispatch = dispatch

    async def run(
        self, argv: Sequence[str], context: ExecutionContext
    ) -> CommandOutcome:
        _log.debug("cli_reentry argv=%s", list(argv))
        exit_code = await asyncio.to_thread(self._dispatch, list(argv), context)
        return CommandOutcome(
            exit_code=int(exit_code),
            output=f"Command executed with exit code: {exit_code}",
        )
