"""Ad Studio - Generate ads and edit them through chat."""

from .api_client import StudioAPIClient
from .chat import ChatThreadController
from .config import StudioConfig, derive_realtime_origin
from .coordinator import GenerationCoordinator
from .credits import CreditLedger
from .errors import (
    ErrorKind,
    FetchError,
    IncompleteWizardError,
    InsufficientCreditsError,
    NotFoundError,
    StudioError,
    UnauthorizedError,
)
from .models import (
    AdCopy,
    AdData,
    AdTemplate,
    BrandTone,
    ChatMessage,
    ChatThread,
    CreditSummary,
    GeneratedAd,
    Job,
    JobEvent,
    JobKind,
    JobStatus,
    Product,
    TrialStatus,
)
from .realtime import ChannelState, RealtimeChannel
from .session import StudioSession
from .signals import Signal, credits_changed
from .workspace import AdWorkspace, WizardStep

__version__ = "0.1.0"

__all__ = [
    "AdCopy",
    "AdData",
    "AdTemplate",
    "AdWorkspace",
    "BrandTone",
    "ChannelState",
    "ChatMessage",
    "ChatThread",
    "ChatThreadController",
    "CreditLedger",
    "CreditSummary",
    "ErrorKind",
    "FetchError",
    "GeneratedAd",
    "GenerationCoordinator",
    "IncompleteWizardError",
    "InsufficientCreditsError",
    "Job",
    "JobEvent",
    "JobKind",
    "JobStatus",
    "NotFoundError",
    "Product",
    "RealtimeChannel",
    "Signal",
    "StudioAPIClient",
    "StudioConfig",
    "StudioError",
    "StudioSession",
    "TrialStatus",
    "UnauthorizedError",
    "WizardStep",
    "credits_changed",
    "derive_realtime_origin",
]
