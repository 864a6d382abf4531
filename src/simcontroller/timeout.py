"""Overall deadline for a sequence of Kubernetes API calls."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

from safir.datetime import current_datetime

from .exceptions import ControllerTimeoutError

__all__ = ["Timeout"]


class Timeout:
    """Deadline shared by every Kubernetes call of one controller operation.

    Creating a server, for example, reads the control plane pod and then
    creates a deployment and a service. Each call is given whatever remains
    of the shared allowance as its request timeout via `left`, and `enforce`
    bounds the whole sequence.

    Parameters
    ----------
    operation
        Human-readable name of the operation, used in errors.
    timeout
        Total time allowed for the operation.
    server
        Server the operation acts on, if any, used in errors.
    """

    def __init__(
        self, operation: str, timeout: timedelta, server: str | None = None
    ) -> None:
        self._operation = operation
        self._server = server
        self._start = current_datetime(microseconds=True)
        self._deadline = self._start + timeout

    @asynccontextmanager
    async def enforce(self) -> AsyncIterator[None]:
        """Cancel the enclosed block when the deadline passes.

        Raises
        ------
        ControllerTimeoutError
            Raised if the deadline passed inside the block, whether noticed
            by `asyncio.timeout` or by a call to `left`.
        """
        try:
            async with asyncio.timeout(self.left()):
                yield
        except (ControllerTimeoutError, TimeoutError) as e:
            raise self._error(current_datetime(microseconds=True)) from e

    def left(self) -> float:
        """Seconds remaining before the deadline.

        Raises
        ------
        ControllerTimeoutError
            Raised if the deadline has already passed.
        """
        now = current_datetime(microseconds=True)
        remaining = (self._deadline - now).total_seconds()
        if remaining <= 0:
            raise self._error(now)
        return remaining

    def _error(self, now: datetime) -> ControllerTimeoutError:
        return ControllerTimeoutError(
            self._operation,
            self._server,
            started_at=self._start,
            failed_at=now,
        )
