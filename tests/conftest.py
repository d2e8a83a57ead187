"""Shared fixtures for the kiosk core test suite."""

import asyncio
from typing import Callable

import pytest


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeRenderer:
    """Records navigations; queued failures are raised on the next navigations."""

    def __init__(self) -> None:
        self.urls: list[str] = []
        self.failures: list[Exception] = []
        self.current_url = ""
        self.captures = 0

    async def navigate(self, url: str) -> None:
        self.urls.append(url)
        if self.failures:
            raise self.failures.pop(0)
        self.current_url = url

    async def capture_frame(self, quality: int = 80) -> str:
        self.captures += 1
        return "ZnJhbWU="


async def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def wait_for():
    """Poll a predicate until it holds, failing the test after a timeout."""
    return _wait_for
