"""Data models for the ad studio."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from .errors import ErrorKind


class CamelModel(BaseModel):
    """Base model that reads and writes the backend's camelCase names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BrandTone(str, Enum):
    """Brand voice options offered in the ad details step."""

    FRIENDLY_CASUAL = "Friendly & Casual"
    PROFESSIONAL_CONCISE = "Professional & Concise"
    EDGY_HUMOROUS = "Edgy & Humorous"
    INSPIRATIONAL_MOTIVATIONAL = "Inspirational & Motivational"
    SOPHISTICATED_LUXURIOUS = "Sophisticated & Luxurious"


class Product(CamelModel):
    """The item being advertised."""

    id: str
    title: str
    description: str = ""
    highlights: list[str] = []
    target_audience: str = ""
    image: Optional[str] = None


class AdTemplate(CamelModel):
    """A selectable visual layout from the template catalog."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    image: str
    category: str = ""
    brand: str = ""
    niche: str = ""
    sub_niche: str = ""
    tags: tuple[str, ...] = ()
    is_custom: bool = False


class AdCopy(CamelModel):
    """Generated text for one template. Never mutated; edits make a new copy."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    template_id: str
    headline: str = ""
    subtitle: str = ""
    body_text: str = ""
    call_to_action: str = ""


class MessageSender(str, Enum):
    """Author of a chat message."""

    USER = "user"
    SYSTEM = "system"


class ChatMessage(CamelModel):
    """A single message in a chat thread."""

    id: str
    sender: MessageSender
    content: str
    timestamp: datetime


class ChatThread(CamelModel):
    """An append-only conversation about one generated ad."""

    id: str
    ad_id: str
    title: str
    messages: list[ChatMessage] = []
    created_at: datetime
    updated_at: datetime


class GeneratedAd(CamelModel):
    """A rendered ad and the chat threads editing it."""

    id: str
    template_id: str
    image_url: str
    final_image_url: Optional[str] = None  # rendered with text
    textless_image_url: Optional[str] = None
    ad_copy: AdCopy
    chat_threads: list[ChatThread] = []
    created_at: datetime = Field(default_factory=datetime.now)
    aspect_ratio: str = "1:1"

    @property
    def current_image_url(self) -> str:
        """The image the UI should show right now."""
        return self.final_image_url or self.image_url


class AdData(CamelModel):
    """Everything collected by the ad creation wizard."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, validate_assignment=True)

    product: Optional[Product] = None
    media_files: list[str] = []
    brand_tone: Optional[BrandTone] = None
    additional_context: str = ""
    additional_instructions: str = ""
    call_to_action: str = ""
    aspect_ratio: Optional[str] = None
    ad_goal: Optional[str] = None
    variation_count: int = 2
    selected_templates: list[AdTemplate] = []
    ad_copy: list[AdCopy] = []
    generated_ads: list[GeneratedAd] = []


# --- Credits & account ---


class TrialStatus(str, Enum):
    """Lifecycle of the free trial allowance."""

    NOT_STARTED = "NOT_STARTED"
    ACTIVE = "ACTIVE"
    EXHAUSTED = "EXHAUSTED"


class CreditSummary(CamelModel):
    """The user's remaining credit balance."""

    credits: int = Field(default=0, ge=0)
    trial_credits: int = Field(default=0, ge=0)
    trial_status: TrialStatus = TrialStatus.NOT_STARTED

    @computed_field
    @property
    def has_credits(self) -> bool:
        return self.credits > 0

    @computed_field
    @property
    def has_trial_credits(self) -> bool:
        return self.trial_credits > 0 and self.trial_status == TrialStatus.ACTIVE

    @property
    def can_generate(self) -> bool:
        """Whether any balance allows a credit-consuming action."""
        return self.has_credits or self.has_trial_credits


class Subscription(CamelModel):
    """Billing state returned by /user/subscription."""

    credits: int = 0
    is_active: bool = False
    status: Optional[str] = None
    stripe_current_period_end: Optional[datetime] = None
    stripe_customer_id: Optional[str] = None
    is_cancelled: bool = False
    stripe_price_id: Optional[str] = None


class ProjectSummary(CamelModel):
    """A recent project shown on the dashboard."""

    id: str
    title: str = "Untitled Project"
    image: Optional[str] = None
    created_at: Optional[datetime] = None


class PricingPlan(CamelModel):
    """A purchasable credit plan."""

    id: str
    name: str
    price: Optional[float] = None
    credits: Optional[int] = None


# --- Jobs ---


class JobKind(str, Enum):
    """Kinds of asynchronous generation work."""

    AD_COPY = "ad_copy"
    AD_IMAGE = "ad_image"
    EDIT = "edit"


class JobStatus(str, Enum):
    """Job lifecycle status."""

    REQUESTED = "requested"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Job(BaseModel):
    """Local record of one generation request, tracked by correlation id."""

    correlation_id: str
    kind: JobKind
    ad_id: Optional[str] = None
    template_id: Optional[str] = None
    sequence: Optional[int] = None  # per-ad edit order
    status: JobStatus = JobStatus.REQUESTED
    orphaned: bool = False
    applied: bool = False
    consumes_credits: bool = False
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    result: dict[str, Any] = {}
    requested_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobEventError(CamelModel):
    """Failure details carried by a job event."""

    kind: Optional[ErrorKind] = None
    message: Optional[str] = None


class JobEvent(CamelModel):
    """A completion or failure event delivered over the realtime channel."""

    correlation_id: str
    ad_id: Optional[str] = None
    status: Optional[JobStatus] = None
    payload: dict[str, Any] = {}
    error: Optional[JobEventError] = None
