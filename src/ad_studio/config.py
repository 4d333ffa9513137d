"""Runtime configuration for the ad studio."""

import os
import re
from typing import Optional
from urllib.parse import urlparse, urlunparse

from dotenv import load_dotenv
from pydantic import BaseModel

DEFAULT_API_URL = "http://localhost:8000"

# Trailing REST prefix stripped to reach the service root ("/api", "/api/v1").
_API_SUFFIX = re.compile(r"/api(/v\d+)?$")


def derive_realtime_origin(api_base_url: str) -> str:
    """Return the realtime endpoint for a REST base URL.

    The event channel lives at the service origin, not under the REST
    prefix, so ``https://host/api`` becomes ``https://host``.
    """
    parsed = urlparse(api_base_url.strip())
    path = _API_SUFFIX.sub("", parsed.path.rstrip("/"))
    return urlunparse((parsed.scheme, parsed.netloc, path, "", "", ""))


class StudioConfig(BaseModel):
    """Settings for one studio session."""

    api_base_url: str = DEFAULT_API_URL
    api_token: Optional[str] = None
    realtime_url: Optional[str] = None
    job_timeout_seconds: float = 180.0
    request_timeout_seconds: float = 60.0
    realtime_connect_timeout_seconds: float = 20.0

    @property
    def realtime_origin(self) -> str:
        return self.realtime_url or derive_realtime_origin(self.api_base_url)

    @classmethod
    def from_env(cls, **overrides) -> "StudioConfig":
        """
        Build a config from environment variables (and a .env file).

        Args:
            **overrides: Explicit values that win over the environment.

        Returns:
            StudioConfig
        """
        load_dotenv()

        values = {
            "api_base_url": os.environ.get("AD_STUDIO_API_URL", DEFAULT_API_URL),
            "api_token": os.environ.get("AD_STUDIO_API_TOKEN"),
            "realtime_url": os.environ.get("AD_STUDIO_REALTIME_URL"),
        }
        if os.environ.get("AD_STUDIO_JOB_TIMEOUT"):
            values["job_timeout_seconds"] = os.environ["AD_STUDIO_JOB_TIMEOUT"]
        if os.environ.get("AD_STUDIO_REQUEST_TIMEOUT"):
            values["request_timeout_seconds"] = os.environ["AD_STUDIO_REQUEST_TIMEOUT"]

        values.update(overrides)
        return cls(**values)
