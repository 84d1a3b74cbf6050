import asyncio
import os
import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("OPENAI_API_KEY", "test-key")

from live_interview.core.errors import AgentConnectionError  # noqa: E402
from live_interview.core.state import AgentRole  # noqa: E402


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("USE_REDIS_SESSION_STORE", "false")


class FakeTransport:
    """Scripted realtime stream; push() feeds events, fail() drops the stream."""

    def __init__(self, role: AgentRole, fail_open: bool = False, open_delay: float = 0.0):
        self.role = role
        self.fail_open = fail_open
        self.open_delay = open_delay
        self.queue: asyncio.Queue = asyncio.Queue()
        self.sent_audio: list[bytes] = []
        self.opened_with: dict | None = None
        self.closed = False

    async def open(self, instructions: str, voice: str) -> str:
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if self.fail_open:
            raise AgentConnectionError("handshake refused", role=self.role.value)
        self.opened_with = {"instructions": instructions, "voice": voice}
        return f"backend-{self.role.value}"

    async def send_audio(self, chunk: bytes) -> None:
        self.sent_audio.append(chunk)

    async def events(self):
        while True:
            item = await self.queue.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self) -> None:
        self.closed = True
        self.queue.put_nowait(None)

    def push(self, event: dict) -> None:
        self.queue.put_nowait(event)

    def fail(self, exc: Exception) -> None:
        self.queue.put_nowait(exc)


class TransportHub:
    def __init__(self):
        self.transports: dict[AgentRole, FakeTransport] = {}
        self.created: list[FakeTransport] = []
        self.fail_roles: set[AgentRole] = set()
        self.open_delay = 0.0

    def factory(self, role: AgentRole) -> FakeTransport:
        transport = FakeTransport(role, fail_open=role in self.fail_roles, open_delay=self.open_delay)
        self.transports[role] = transport
        self.created.append(transport)
        return transport

    def __getitem__(self, role: AgentRole) -> FakeTransport:
        return self.transports[role]


class _ManualHandle:
    def __init__(self, when: float, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic timer scheduler driven by advance()."""

    def __init__(self):
        self.now = 0.0
        self._timers: list[_ManualHandle] = []

    def call_later(self, delay: float, callback):
        handle = _ManualHandle(self.now + float(delay), callback)
        self._timers.append(handle)
        return handle

    @property
    def pending(self) -> int:
        return len([t for t in self._timers if not t.cancelled])

    def advance(self, seconds: float) -> None:
        self.now += float(seconds)
        while True:
            due = sorted(
                [t for t in self._timers if not t.cancelled and t.when <= self.now],
                key=lambda t: t.when,
            )
            if not due:
                break
            timer = due[0]
            self._timers.remove(timer)
            timer.callback()
        self._timers = [t for t in self._timers if not t.cancelled]


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += float(seconds)


async def drain(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def hub() -> TransportHub:
    return TransportHub()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
