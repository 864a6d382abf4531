"""Tests for the operation deadline."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from simcontroller.exceptions import ControllerTimeoutError
from simcontroller.timeout import Timeout


@pytest.mark.asyncio
async def test_left() -> None:
    timeout = Timeout("Server restart", timedelta(seconds=10), "sftp")
    assert 9.0 < timeout.left() <= 10.0

    timeout = Timeout("Server restart", timedelta(seconds=0), "sftp")
    with pytest.raises(ControllerTimeoutError) as excinfo:
        timeout.left()
    assert excinfo.value.server == "sftp"
    assert excinfo.value.operation == "Server restart"


@pytest.mark.asyncio
async def test_enforce() -> None:
    timeout = Timeout("Discovering servers", timedelta(milliseconds=50))
    with pytest.raises(ControllerTimeoutError, match="Discovering servers"):
        async with timeout.enforce():
            await asyncio.sleep(1)

    timeout = Timeout("Discovering servers", timedelta(seconds=5))
    async with timeout.enforce():
        await asyncio.sleep(0)
