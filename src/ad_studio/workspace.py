"""In-memory state of the ad creation wizard and its generated ads."""

import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from .copywriting import DEFAULT_CALL_TO_ACTION, draft_copy
from .errors import IncompleteWizardError, NotFoundError
from .models import (
    AdCopy,
    AdData,
    AdTemplate,
    ChatMessage,
    ChatThread,
    GeneratedAd,
    MessageSender,
)

logger = logging.getLogger(__name__)

THREAD_GREETING = "How would you like to modify this ad?"


class WizardStep(str, Enum):
    """Steps of the ad creation flow, in order."""

    DETAILS = "details"
    TEMPLATES = "templates"
    COPY = "copy"
    GENERATE = "generate"
    RESULTS = "results"


class AdWorkspace:
    """
    The single mutable aggregate of an in-progress ad creation session.

    Owned by one session; nothing here is persisted. UI code subscribes
    to re-render after every mutation.
    """

    def __init__(self, data: Optional[AdData] = None, clock: Callable[[], datetime] = datetime.now):
        self._data = data or AdData()
        self._clock = clock
        self._listeners: list[Callable[[], None]] = []

    @property
    def data(self) -> AdData:
        return self._data

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Call ``listener`` after every change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Workspace listener failed")

    # --- Wizard inputs ---

    def update(self, **fields: Any) -> None:
        """Set wizard fields by name, e.g. ``update(brand_tone=BrandTone.EDGY_HUMOROUS)``."""
        candidate = self._data.model_copy()
        for name, value in fields.items():
            setattr(candidate, name, value)
        self._data = candidate
        self._changed()

    def reset(self) -> None:
        self._data = AdData()
        self._changed()

    def add_media_file(self, reference: str) -> None:
        self._data.media_files = [*self._data.media_files, reference]
        self._changed()

    def remove_media_file(self, index: int) -> None:
        self._data.media_files = [
            ref for i, ref in enumerate(self._data.media_files) if i != index
        ]
        self._changed()

    def add_template(self, template: AdTemplate) -> bool:
        """Select a template. Returns False if it was already selected."""
        if any(t.id == template.id for t in self._data.selected_templates):
            return False
        self._data.selected_templates = [*self._data.selected_templates, template]
        self._changed()
        return True

    def remove_template(self, template_id: str) -> None:
        """Deselect a template and drop the copy written for it."""
        self._data.selected_templates = [
            t for t in self._data.selected_templates if t.id != template_id
        ]
        self._data.ad_copy = [c for c in self._data.ad_copy if c.template_id != template_id]
        self._changed()

    def create_custom_template(self, image: str, **fields: Any) -> AdTemplate:
        """Create a user template and put it first in the selection."""
        template_id = f"custom-{int(self._clock().timestamp() * 1000)}"
        existing = {t.id for t in self._data.selected_templates}
        while template_id in existing:
            template_id = f"{template_id}-{uuid.uuid4().hex[:4]}"

        template = AdTemplate(id=template_id, image=image, is_custom=True, **fields)
        self._data.selected_templates = [template, *self._data.selected_templates]
        self._changed()
        return template

    def get_template_copy(self, template_id: str) -> AdCopy:
        """Copy for a template, or an empty one carrying the workspace CTA."""
        for copy in self._data.ad_copy:
            if copy.template_id == template_id:
                return copy
        return AdCopy(
            template_id=template_id,
            call_to_action=self._data.call_to_action or DEFAULT_CALL_TO_ACTION,
        )

    def update_ad_copy(self, copy: AdCopy) -> None:
        """Replace the copy for ``copy.template_id`` (or add it)."""
        copies = list(self._data.ad_copy)
        for i, existing in enumerate(copies):
            if existing.template_id == copy.template_id:
                copies[i] = copy
                break
        else:
            copies.append(copy)
        self._data.ad_copy = copies
        self._changed()

    def draft_ad_copy(self) -> list[AdCopy]:
        """Fill in tone-based copy for every selected template, keeping existing copy."""
        product_name = self._data.product.title if self._data.product else "Product"
        existing = {c.template_id: c for c in self._data.ad_copy}
        copies = [
            draft_copy(
                template,
                product_name,
                self._data.brand_tone,
                self._data.call_to_action,
                existing.get(template.id),
            )
            for template in self._data.selected_templates
        ]
        self._data.ad_copy = copies
        self._changed()
        return copies

    # --- Wizard progress ---

    @property
    def current_step(self) -> WizardStep:
        """First step that still needs input. Lets an abandoned flow resume."""
        data = self._data
        if not data.product or not data.brand_tone or not data.aspect_ratio:
            return WizardStep.DETAILS
        if not data.selected_templates:
            return WizardStep.TEMPLATES
        copied = {c.template_id for c in data.ad_copy}
        if any(t.id not in copied for t in data.selected_templates):
            return WizardStep.COPY
        if not data.generated_ads:
            return WizardStep.GENERATE
        return WizardStep.RESULTS

    def missing_requirements(self) -> list[str]:
        data = self._data
        missing = []
        if not data.product:
            missing.append("Product is required")
        if not data.brand_tone:
            missing.append("Brand tone is required")
        if not data.aspect_ratio:
            missing.append("Aspect ratio is required")
        if not data.media_files:
            missing.append("At least one media file is required")
        if not data.selected_templates:
            missing.append("At least one template must be selected")
        return missing

    def build_submission(self, media_urls: Optional[list[str]] = None) -> dict[str, Any]:
        """
        Build the ad creation request body.

        Args:
            media_urls: Uploaded URLs to send instead of the local media references

        Raises:
            IncompleteWizardError: If a required field is missing
        """
        missing = self.missing_requirements()
        if missing:
            raise IncompleteWizardError(missing)

        data = self._data
        return {
            "product": data.product.model_dump(mode="json", by_alias=True),
            "brandTone": data.brand_tone.value,
            "aspectRatio": data.aspect_ratio,
            "adGoal": data.ad_goal,
            "callToAction": data.call_to_action,
            "variationCount": data.variation_count,
            "mediaFiles": media_urls if media_urls is not None else list(data.media_files),
            "additionalContext": data.additional_context,
            "additionalInstructions": data.additional_instructions,
            "templates": [t.id for t in data.selected_templates],
        }

    def snapshot(self) -> dict[str, Any]:
        """Serializable copy of the workspace, for resuming later."""
        return self._data.model_dump(mode="json", by_alias=True)

    @classmethod
    def restore(cls, snapshot: dict[str, Any], **kwargs: Any) -> "AdWorkspace":
        return cls(AdData.model_validate(snapshot), **kwargs)

    # --- Generated ads ---

    def find_generated_ad(self, ad_id: str) -> Optional[GeneratedAd]:
        for ad in self._data.generated_ads:
            if ad.id == ad_id:
                return ad
        return None

    def get_generated_ad(self, ad_id: str) -> GeneratedAd:
        ad = self.find_generated_ad(ad_id)
        if ad is None:
            raise NotFoundError(f"Ad {ad_id} not found")
        return ad

    def has_ad(self, ad_id: str) -> bool:
        return self.find_generated_ad(ad_id) is not None

    def add_generated_ad(self, ad: GeneratedAd) -> None:
        self.upsert_generated_ad(ad)

    def upsert_generated_ad(self, ad: GeneratedAd) -> GeneratedAd:
        """
        Insert an ad, or replace the one with the same id.

        A reloaded ad without chat threads keeps the threads already held
        locally.
        """
        ads = list(self._data.generated_ads)
        for i, existing in enumerate(ads):
            if existing.id == ad.id:
                if not ad.chat_threads and existing.chat_threads:
                    ad = ad.model_copy(update={"chat_threads": existing.chat_threads})
                ads[i] = ad
                break
        else:
            ads.append(ad)
        self._data.generated_ads = ads
        self._changed()
        return ad

    def apply_ad_update(
        self,
        ad_id: str,
        *,
        image_url: Optional[str] = None,
        final_image_url: Optional[str] = None,
        textless_image_url: Optional[str] = None,
        ad_copy: Optional[AdCopy] = None,
    ) -> GeneratedAd:
        """
        Swap in the result of an edit as one replacement of the ad.

        A new image (``image_url`` or ``final_image_url``) replaces the whole
        visual state: a stale final render is dropped when only a base image
        arrives, so ``current_image_url`` always shows the edit.

        Raises:
            NotFoundError: If the ad is not in the workspace
        """
        ad = self.get_generated_ad(ad_id)
        update: dict[str, Any] = {}
        if image_url or final_image_url:
            update["image_url"] = image_url or ad.image_url
            update["final_image_url"] = final_image_url
        if textless_image_url:
            update["textless_image_url"] = textless_image_url
        if ad_copy is not None:
            update["ad_copy"] = ad_copy
        if not update:
            return ad

        updated = ad.model_copy(update=update)
        self._data.generated_ads = [
            updated if existing.id == ad_id else existing
            for existing in self._data.generated_ads
        ]
        self._changed()
        return updated

    # --- Chat threads ---

    def create_chat_thread(self, ad_id: str, title: str) -> ChatThread:
        """Open a new thread on an ad, seeded with the system greeting."""
        ad = self.get_generated_ad(ad_id)
        now = self._clock()
        thread = ChatThread(
            id=f"thread-{uuid.uuid4().hex[:12]}",
            ad_id=ad_id,
            title=title,
            messages=[
                ChatMessage(
                    id=f"msg-{uuid.uuid4().hex[:12]}",
                    sender=MessageSender.SYSTEM,
                    content=THREAD_GREETING,
                    timestamp=now,
                )
            ],
            created_at=now,
            updated_at=now,
        )
        ad.chat_threads.append(thread)
        self._changed()
        return thread

    def get_chat_thread(self, thread_id: str, ad_id: Optional[str] = None) -> ChatThread:
        ads = [self.get_generated_ad(ad_id)] if ad_id else self._data.generated_ads
        for ad in ads:
            for thread in ad.chat_threads:
                if thread.id == thread_id:
                    return thread
        raise NotFoundError(f"Chat thread {thread_id} not found")

    def add_chat_message(
        self,
        ad_id: str,
        thread_id: str,
        sender: MessageSender,
        content: str,
    ) -> ChatMessage:
        """
        Append a message to a thread.

        Timestamps never go backwards within a thread, even if the clock does.
        """
        thread = self.get_chat_thread(thread_id, ad_id=ad_id)
        timestamp = max(self._clock(), thread.updated_at)
        message = ChatMessage(
            id=f"msg-{uuid.uuid4().hex[:12]}",
            sender=sender,
            content=content,
            timestamp=timestamp,
        )
        thread.messages.append(message)
        thread.updated_at = timestamp
        self._changed()
        return message
