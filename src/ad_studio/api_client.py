"""Authenticated async client for the ad studio REST API."""

import inspect
import logging
import os
from typing import Any, Awaitable, Callable, Optional, Union

import httpx

from .errors import (
    FetchError,
    InsufficientCreditsError,
    NotFoundError,
    StudioError,
    UnauthorizedError,
)
from .models import CreditSummary, GeneratedAd, PricingPlan, ProjectSummary, Subscription

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]


def _is_credit_error(text: str) -> bool:
    """Check if an error message indicates insufficient credits."""
    if not text:
        return False
    text_lower = text.lower()
    credit_indicators = [
        "insufficient credit",
        "not enough credit",
        "no credits",
        "out of credits",
        "credits exhausted",
        "trial exhausted",
    ]
    return any(indicator in text_lower for indicator in credit_indicators)


def _error_message(response: httpx.Response) -> str:
    """Pull a human-readable message out of an error response."""
    try:
        data = response.json()
        if isinstance(data, dict):
            msg = data.get("message") or data.get("error") or data.get("detail")
            if isinstance(msg, str) and msg:
                return msg
    except ValueError:
        pass

    text = response.text.strip()
    if text:
        return f"API error ({response.status_code}): {text[:200]}"
    return f"API error ({response.status_code})"


def error_from_response(response: httpx.Response) -> StudioError:
    """Map a non-2xx response onto the matching StudioError."""
    status_code = response.status_code
    message = _error_message(response)

    if status_code == 402 or _is_credit_error(message):
        return InsufficientCreditsError(message, status_code=status_code)
    if status_code in (401, 403):
        return UnauthorizedError(message, status_code=status_code)
    if status_code == 404:
        return NotFoundError(message, status_code=status_code)
    return FetchError(message, status_code=status_code)


class StudioAPIClient:
    """Async client for the ad studio backend."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        token_provider: Optional[TokenProvider] = None,
        timeout: float = 60.0,
    ):
        """
        Initialize the API client.

        Args:
            base_url: REST API base. Reads from AD_STUDIO_API_URL if not provided.
            token: Bearer token. Reads from AD_STUDIO_API_TOKEN if not provided.
            token_provider: Callable returning a fresh token per request
                (sync or async). Takes precedence over ``token``.
            timeout: Request timeout in seconds.
        """
        self.base_url = (base_url or os.environ.get("AD_STUDIO_API_URL", "")).rstrip("/")
        if not self.base_url:
            raise FetchError("API base URL not provided. Set AD_STUDIO_API_URL env var.")

        self.token = token or os.environ.get("AD_STUDIO_API_TOKEN")
        self.token_provider = token_provider
        if not self.token and not self.token_provider:
            raise UnauthorizedError("API token not provided. Set AD_STUDIO_API_TOKEN env var.")

        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        """Enter async context."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_token(self) -> Optional[str]:
        if self.token_provider:
            token = self.token_provider()
            if inspect.isawaitable(token):
                token = await token
            return token
        return self.token

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        if not self._client:
            raise FetchError("Client not initialized. Use 'async with' context.")

        try:
            token = await self.get_token()
        except StudioError:
            raise
        except Exception as e:
            raise UnauthorizedError(f"Could not obtain session token: {e}") from e
        if not token:
            raise UnauthorizedError("No active session")

        try:
            response = await self._client.request(
                method,
                path,
                headers={"Authorization": f"Bearer {token}"},
                **kwargs,
            )
        except httpx.HTTPError as e:
            raise FetchError(f"Request to {path} failed: {e}") from e

        if response.is_error:
            raise error_from_response(response)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f"Invalid JSON from {path}", status_code=response.status_code) from e

    async def get_credit_summary(self) -> CreditSummary:
        """Fetch the authoritative credit balance."""
        data = await self._request("GET", "/user/credits")
        return CreditSummary.model_validate(data)

    async def get_subscription(self) -> Subscription:
        data = await self._request("GET", "/user/subscription")
        return Subscription.model_validate(data)

    async def get_recent_projects(self, take: int = 3) -> list[ProjectSummary]:
        data = await self._request("GET", "/projects/recent", params={"take": take})
        items = data.get("projects", []) if isinstance(data, dict) else data
        return [ProjectSummary.model_validate(item) for item in items]

    async def get_pricing_plans(self) -> list[PricingPlan]:
        """
        Fetch purchasable plans.

        Plans are decorative; any failure is logged and treated as "no data".
        """
        try:
            data = await self._request("GET", "/pricing/plans")
            items = data.get("plans", []) if isinstance(data, dict) else data
            return [PricingPlan.model_validate(item) for item in items]
        except StudioError as e:
            logger.warning("Pricing plans unavailable: %s", e)
            return []

    async def get_campaign_ads(self, campaign_id: str) -> tuple[list[GeneratedAd], list[dict]]:
        """
        Fetch the generated ads of a campaign.

        Returns:
            Tuple of (generated ads, raw job status entries still in flight)
        """
        data = await self._request("GET", f"/ads/{campaign_id}")
        ads = [GeneratedAd.model_validate(ad) for ad in data.get("ads", [])]
        pending = [
            job
            for job in data.get("jobStatuses", [])
            if job.get("status") in ("active", "waiting")
        ]
        return ads, pending

    async def submit_job(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        """
        Submit a generation request for asynchronous processing.

        Args:
            path: Generation endpoint path
            body: JSON body, including the client's correlationId

        Returns:
            The backend's acknowledgement payload
        """
        data = await self._request("POST", path, json=body)
        return data if isinstance(data, dict) else {}
