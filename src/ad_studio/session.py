"""Lifecycle of one ad studio session."""

import logging
from typing import Any, Callable, Optional

from .api_client import StudioAPIClient, TokenProvider
from .chat import ChatThreadController
from .config import StudioConfig
from .coordinator import GenerationCoordinator
from .credits import CreditLedger
from .errors import StudioError
from .models import GeneratedAd
from .realtime import RealtimeChannel, default_transport_factory
from .workspace import AdWorkspace

logger = logging.getLogger(__name__)


class StudioSession:
    """
    Owns every per-session resource: the API client, the credit ledger,
    the realtime channel, the workspace and the coordinator.

    Use as an async context manager; leaving it releases the channel and
    orphans whatever jobs are still running.
    """

    def __init__(
        self,
        config: Optional[StudioConfig] = None,
        token_provider: Optional[TokenProvider] = None,
        transport_factory: Callable[[], Any] = default_transport_factory,
        workspace: Optional[AdWorkspace] = None,
    ):
        self.config = config or StudioConfig.from_env()
        self.api = StudioAPIClient(
            base_url=self.config.api_base_url,
            token=self.config.api_token,
            token_provider=token_provider,
            timeout=self.config.request_timeout_seconds,
        )
        self.channel = RealtimeChannel(
            transport_factory=transport_factory,
            connect_timeout=self.config.realtime_connect_timeout_seconds,
            token=self.config.api_token,
        )
        self.workspace = workspace or AdWorkspace()
        self.ledger: Optional[CreditLedger] = None
        self.coordinator: Optional[GenerationCoordinator] = None

    async def __aenter__(self):
        """Open the API client, connect the channel and load the credit balance."""
        await self.api.__aenter__()
        self.ledger = CreditLedger(self.api)
        self.coordinator = GenerationCoordinator(
            self.api,
            self.ledger,
            self.workspace,
            timeout_seconds=self.config.job_timeout_seconds,
        )
        self.coordinator.attach(self.channel)
        await self.channel.connect(self.config.realtime_origin)

        try:
            await self.ledger.refresh()
        except StudioError as e:
            logger.warning("Initial credit refresh failed: %s", e)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Release the channel and close the API client."""
        if self.coordinator:
            self.coordinator.abandon()
            self.coordinator.close()
        await self.channel.disconnect()
        if self.ledger:
            self.ledger.close()
        await self.api.__aexit__(exc_type, exc_val, exc_tb)

    def chat(
        self,
        ad_id: str,
        thread_id: Optional[str] = None,
        on_navigate: Optional[Callable[[str], None]] = None,
    ) -> ChatThreadController:
        """Open (or continue) the chat thread for an ad."""
        if not self.coordinator:
            raise StudioError("Session not started. Use 'async with' context.")
        return ChatThreadController(
            self.workspace,
            self.coordinator,
            ad_id,
            thread_id=thread_id,
            on_navigate=on_navigate,
        )

    async def load_campaign(self, campaign_id: str) -> list[GeneratedAd]:
        """Reload a campaign's generated ads into the workspace."""
        ads, pending = await self.api.get_campaign_ads(campaign_id)
        for ad in ads:
            self.workspace.upsert_generated_ad(ad)
        if pending:
            logger.info("Campaign %s still has %d ads generating", campaign_id, len(pending))
        return ads
