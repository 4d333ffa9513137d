"""Cached, broadcast-aware view of the user's credit balance."""

import asyncio
import logging
from typing import Any, Callable, Optional

from .api_client import StudioAPIClient
from .errors import StudioError
from .models import CreditSummary
from .signals import Signal, credits_changed

logger = logging.getLogger(__name__)

CreditListener = Callable[[CreditSummary], None]


class CreditLedger:
    """
    Process-local cache of the credit balance.

    The backend is the source of truth; the ledger only caches the last
    value it saw and tells listeners when it changes. Every open ledger
    re-fetches when the process-wide ``credits-changed`` signal fires.
    """

    def __init__(
        self,
        api: StudioAPIClient,
        signal: Signal = credits_changed,
        initial: Optional[CreditSummary] = None,
    ):
        self._api = api
        self._signal = signal
        self._summary = initial or CreditSummary()
        self._listeners: list[CreditListener] = []
        self._inflight: Optional[asyncio.Task] = None
        self._background: set[asyncio.Task] = set()
        self._disconnect_signal = signal.connect(self._on_credits_changed)

    def get(self) -> CreditSummary:
        """Return the last known balance. May be stale."""
        return self._summary

    async def refresh(self) -> CreditSummary:
        """
        Fetch the authoritative balance and replace the cached value.

        Concurrent callers share one request.

        Raises:
            FetchError: If the backend can't be reached; the cache is kept.
        """
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._fetch())
        return await asyncio.shield(self._inflight)

    async def _fetch(self) -> CreditSummary:
        summary = await self._api.get_credit_summary()
        self.apply(summary)
        return summary

    def apply(self, summary: CreditSummary) -> None:
        """Adopt a balance carried by some other response."""
        if summary == self._summary:
            return
        self._summary = summary
        for listener in list(self._listeners):
            try:
                listener(summary)
            except Exception:
                logger.exception("Credit listener failed")

    def subscribe(self, listener: CreditListener) -> Callable[[], None]:
        """Call ``listener`` on every change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify_changed(self) -> None:
        """Broadcast that credits changed so every ledger re-fetches."""
        self._signal.send(self)

    def _on_credits_changed(self, sender: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("Credits changed outside an event loop; refresh skipped")
            return
        task = loop.create_task(self._refresh_quietly())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _refresh_quietly(self) -> None:
        try:
            await self.refresh()
        except StudioError as e:
            logger.warning("Credit refresh after broadcast failed: %s", e)

    def close(self) -> None:
        """Stop listening for broadcasts and cancel background refreshes."""
        self._disconnect_signal()
        for task in list(self._background):
            task.cancel()
        self._background.clear()
