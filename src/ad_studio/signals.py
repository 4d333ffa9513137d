"""Process-wide named signals."""

import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class Signal:
    """A named in-process broadcast. Receivers run synchronously, in connect order."""

    def __init__(self, name: str):
        self.name = name
        self._receivers: list[Callable[[Any], None]] = []

    def connect(self, receiver: Callable[[Any], None]) -> Callable[[], None]:
        """Register a receiver and return a function that removes it."""
        if receiver not in self._receivers:
            self._receivers.append(receiver)

        def disconnect() -> None:
            self.disconnect(receiver)

        return disconnect

    def disconnect(self, receiver: Callable[[Any], None]) -> None:
        if receiver in self._receivers:
            self._receivers.remove(receiver)

    @property
    def receivers(self) -> list[Callable[[Any], None]]:
        return list(self._receivers)

    def send(self, sender: Optional[Any] = None) -> int:
        """Deliver the signal to every receiver. Returns how many were called."""
        delivered = 0
        for receiver in list(self._receivers):
            try:
                receiver(sender)
            except Exception:
                # Receivers fail independently.
                logger.exception("Receiver of %r signal failed", self.name)
            delivered += 1
        return delivered


credits_changed = Signal("credits-changed")
