"""Shared fixtures and fakes for the ad studio tests."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

import pytest

from ad_studio.coordinator import GenerationCoordinator
from ad_studio.credits import CreditLedger
from ad_studio.models import AdCopy, AdTemplate, CreditSummary, GeneratedAd, Product, TrialStatus
from ad_studio.signals import Signal
from ad_studio.workspace import AdWorkspace

BASE_URL = "https://api.test/api"
TOKEN = "test-token"


class FakeTransport:
    """Stands in for socketio.AsyncClient: records handlers, fires events on demand."""

    def __init__(self, fail_with: Exception | None = None, fail_times: int | None = None):
        self.handlers = {}
        self.connected = False
        self.connect_calls = []
        self.disconnect_calls = 0
        self.fail_with = fail_with
        self.fail_times = fail_times  # None: every attempt fails

    def on(self, event, handler):
        self.handlers[event] = handler

    async def connect(self, url, **kwargs):
        self.connect_calls.append((url, kwargs))
        if self.fail_with and (self.fail_times is None or len(self.connect_calls) <= self.fail_times):
            raise self.fail_with
        self.connected = True
        await self.fire("connect")

    async def disconnect(self):
        self.disconnect_calls += 1
        self.connected = False
        await self.fire("disconnect", "io client disconnect")

    async def drop(self):
        """Simulate the network going away."""
        self.connected = False
        await self.fire("disconnect", "transport close")

    async def reconnect(self):
        self.connected = True
        await self.fire("connect")

    async def fire(self, event, *args):
        handler = self.handlers.get(event)
        if handler:
            await handler(*args)


class TransportFactory:
    """Callable that builds FakeTransports and remembers them."""

    def __init__(self, fail_with: Exception | None = None, fail_times: int | None = None):
        self.fail_with = fail_with
        self.fail_times = fail_times
        self.created: list[FakeTransport] = []

    def __call__(self) -> FakeTransport:
        transport = FakeTransport(self.fail_with, self.fail_times)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


class SteppingClock:
    """Clock that advances by a fixed step on every read."""

    def __init__(self, start: datetime = datetime(2024, 5, 1, 12, 0, 0), step_seconds: float = 1.0):
        self.now = start
        self.step = timedelta(seconds=step_seconds)

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


async def settle(ticks: int = 20) -> None:
    """Let background tasks (credit refreshes, handlers) run."""
    for _ in range(ticks):
        await asyncio.sleep(0)


@asynccontextmanager
async def studio(api, workspace: AdWorkspace, credits: int = 5, timeout_seconds: float = 180.0):
    """A ledger and coordinator around ``workspace``, torn down cleanly."""
    ledger = CreditLedger(
        api,
        signal=Signal("credits-changed"),
        initial=CreditSummary(credits=credits, trial_status=TrialStatus.NOT_STARTED),
    )
    coordinator = GenerationCoordinator(api, ledger, workspace, timeout_seconds=timeout_seconds)
    try:
        yield ledger, coordinator
    finally:
        await settle()
        coordinator.close()
        ledger.close()


def make_ad(ad_id: str = "ad-1", template_id: str = "tpl-1", **fields) -> GeneratedAd:
    return GeneratedAd(
        id=ad_id,
        template_id=template_id,
        image_url=f"https://cdn.test/{ad_id}/v0.png",
        ad_copy=AdCopy(template_id=template_id, headline="Original headline"),
        aspect_ratio="1:1",
        **fields,
    )


@pytest.fixture
def product() -> Product:
    return Product(
        id="prod-1",
        title="Trail Runner 2",
        description="Lightweight trail running shoe",
        highlights=["Grippy sole", "Breathable mesh"],
        target_audience="Weekend trail runners",
    )


@pytest.fixture
def template() -> AdTemplate:
    return AdTemplate(
        id="tpl-1",
        image="https://cdn.test/templates/1.png",
        category="Apparel",
        niche="Running",
        tags=["bold", "outdoor"],
    )


@pytest.fixture
def other_template() -> AdTemplate:
    return AdTemplate(id="tpl-2", image="https://cdn.test/templates/2.png", category="Apparel")


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock()


@pytest.fixture
def workspace(clock) -> AdWorkspace:
    ws = AdWorkspace(clock=clock)
    ws.add_generated_ad(make_ad())
    return ws


@pytest.fixture
def transports() -> TransportFactory:
    return TransportFactory()
