"""Orchestration of asynchronous ad generation and edit jobs."""

import asyncio
import logging
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Optional

from pydantic import ValidationError

from .api_client import StudioAPIClient
from .credits import CreditLedger
from .errors import ErrorKind, InsufficientCreditsError, NotFoundError, StudioError
from .models import (
    AdCopy,
    CreditSummary,
    GeneratedAd,
    Job,
    JobEvent,
    JobKind,
    JobStatus,
)
from .realtime import RealtimeChannel
from .workspace import AdWorkspace

logger = logging.getLogger(__name__)

COMPLETED_EVENT = "generation:completed"
FAILED_EVENT = "generation:failed"

AD_COPY_PATH = "/ads/copy/generate"
AD_IMAGE_PATH = "/ads/image/generate"
EDIT_PATH = "/ads/{ad_id}/edit"

JobCallback = Callable[[Job], None]


class GenerationCoordinator:
    """
    Turns generation intents into tracked jobs and merges their results.

    Each job is issued over REST with a client-side correlation id, waits
    in ``pending`` until a matching realtime event (or the timeout) ends
    it, and is then merged into the workspace. Edits of one ad are merged
    in the order they were requested, whatever order their events arrive in.
    """

    def __init__(
        self,
        api: StudioAPIClient,
        ledger: CreditLedger,
        workspace: AdWorkspace,
        timeout_seconds: float = 180.0,
    ):
        self._api = api
        self._ledger = ledger
        self._workspace = workspace
        self.timeout_seconds = timeout_seconds

        self._jobs: dict[str, Job] = {}
        self._callbacks: dict[str, JobCallback] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._listeners: list[JobCallback] = []
        self._channel: Optional[RealtimeChannel] = None

        # Per-ad edit ordering: next sequence to hand out, next one to merge,
        # finished edits waiting for their predecessors, abandoned slots, and
        # the newest sequence merged so far.
        self._next_sequence: dict[str, int] = defaultdict(int)
        self._next_to_apply: dict[str, int] = defaultdict(int)
        self._resolved: dict[str, dict[int, Job]] = defaultdict(dict)
        self._skipped: dict[str, set[int]] = defaultdict(set)
        self._last_merged: dict[str, int] = {}

    # --- Wiring ---

    def attach(self, channel: RealtimeChannel) -> None:
        """Receive job events from ``channel``."""
        if self._channel is channel:
            return
        self.detach()
        channel.on(COMPLETED_EVENT, self.handle_completed)
        channel.on(FAILED_EVENT, self.handle_failed)
        self._channel = channel

    def detach(self) -> None:
        if self._channel is None:
            return
        self._channel.off(COMPLETED_EVENT, self.handle_completed)
        self._channel.off(FAILED_EVENT, self.handle_failed)
        self._channel = None

    def subscribe(self, listener: JobCallback) -> Callable[[], None]:
        """Call ``listener`` whenever a job changes. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, job: Job) -> None:
        for listener in list(self._listeners):
            try:
                listener(job)
            except Exception:
                logger.exception("Job listener failed for %s", job.correlation_id)

    # --- Queries ---

    def get_job(self, correlation_id: str) -> Optional[Job]:
        return self._jobs.get(correlation_id)

    def jobs(self) -> list[Job]:
        return list(self._jobs.values())

    def pending_jobs(self, ad_id: Optional[str] = None) -> list[Job]:
        """Jobs the UI should show as in progress. Orphaned jobs are hidden."""
        return [
            job
            for job in self._jobs.values()
            if not job.is_terminal
            and not job.orphaned
            and (ad_id is None or job.ad_id == ad_id)
        ]

    # --- Intents ---

    async def generate_ad_copy(
        self,
        template_id: str,
        on_resolved: Optional[JobCallback] = None,
    ) -> Job:
        """Ask the backend to write ad copy for a selected template."""
        job = self._new_job(JobKind.AD_COPY, template_id=template_id)
        body = {**self._wizard_context(), "templateId": template_id}
        return await self._submit(job, AD_COPY_PATH, body, on_resolved)

    async def generate_ad_image(
        self,
        template_id: str,
        on_resolved: Optional[JobCallback] = None,
    ) -> Job:
        """Ask the backend to render an ad image for a selected template."""
        job = self._new_job(JobKind.AD_IMAGE, template_id=template_id, consumes_credits=True)
        body = {
            **self._wizard_context(),
            "templateId": template_id,
            "adCopy": self._workspace.get_template_copy(template_id).model_dump(by_alias=True),
            "aspectRatio": self._workspace.data.aspect_ratio,
            "mediaFiles": list(self._workspace.data.media_files),
        }
        return await self._submit(job, AD_IMAGE_PATH, body, on_resolved)

    async def generate_ads(self) -> list[Job]:
        """Render one ad per selected template."""
        jobs = []
        for template in self._workspace.data.selected_templates:
            jobs.append(await self.generate_ad_image(template.id))
        return jobs

    async def request_edit(
        self,
        ad_id: str,
        instruction: str,
        thread_id: Optional[str] = None,
        on_resolved: Optional[JobCallback] = None,
    ) -> Job:
        """
        Ask the backend to edit an ad according to a chat instruction.

        Args:
            ad_id: Ad to edit
            instruction: The user's edit request
            thread_id: Chat thread the request came from
            on_resolved: Called with the job once its result has been merged
                (or its failure recorded), in request order for this ad

        Returns:
            The job record. It is already ``failed`` if the request could
            not be issued.
        """
        job = self._new_job(JobKind.EDIT, ad_id=ad_id, consumes_credits=True)
        if not self._workspace.has_ad(ad_id):
            return self._reject(job, NotFoundError(f"Ad {ad_id} not found"), on_resolved)

        body = {"adId": ad_id, "threadId": thread_id, "instruction": instruction}
        return await self._submit(job, EDIT_PATH.format(ad_id=ad_id), body, on_resolved)

    def _new_job(self, kind: JobKind, **fields: Any) -> Job:
        return Job(correlation_id=str(uuid.uuid4()), kind=kind, **fields)

    def _wizard_context(self) -> dict[str, Any]:
        data = self._workspace.data
        return {
            "product": data.product.model_dump(mode="json", by_alias=True) if data.product else None,
            "brandTone": data.brand_tone.value if data.brand_tone else None,
            "callToAction": data.call_to_action,
            "additionalContext": data.additional_context,
            "additionalInstructions": data.additional_instructions,
        }

    def _reject(self, job: Job, error: StudioError, on_resolved: Optional[JobCallback]) -> Job:
        """Fail a job that never reached the backend."""
        job.status = JobStatus.FAILED
        job.error_kind = error.kind
        job.error_message = str(error)
        self._jobs[job.correlation_id] = job
        logger.info("Job %s (%s) rejected: %s", job.correlation_id, job.kind.value, error)
        self._notify(job)
        if on_resolved:
            on_resolved(job)
        return job

    async def _submit(
        self,
        job: Job,
        path: str,
        body: dict[str, Any],
        on_resolved: Optional[JobCallback],
    ) -> Job:
        if job.consumes_credits and not self._ledger.get().can_generate:
            return self._reject(
                job,
                InsufficientCreditsError("You don't have enough credits for this action"),
                on_resolved,
            )

        if job.kind == JobKind.EDIT:
            job.sequence = self._next_sequence[job.ad_id]
            self._next_sequence[job.ad_id] += 1

        self._jobs[job.correlation_id] = job
        if on_resolved:
            self._callbacks[job.correlation_id] = on_resolved
        self._notify(job)

        try:
            ack = await self._api.submit_job(path, {**body, "correlationId": job.correlation_id})
        except StudioError as e:
            if e.kind == ErrorKind.INSUFFICIENT_CREDITS:
                await self._force_credit_refresh()
            self._fail(job, e.kind, str(e))
            return job
        except asyncio.CancelledError:
            logger.info("Submission of job %s cancelled; orphaning it", job.correlation_id)
            self._orphan(job)
            raise
        except Exception as e:
            logger.exception("Submitting job %s failed", job.correlation_id)
            self._fail(job, ErrorKind.FETCH_ERROR, f"Request failed: {e}")
            return job

        if job.consumes_credits:
            self._adopt_credits(ack)
            self._ledger.notify_changed()

        # The result event may have beaten the acknowledgement.
        if job.status == JobStatus.REQUESTED:
            job.status = JobStatus.PENDING
            job.updated_at = datetime.now()
            if not job.orphaned:
                self._start_timer(job)
            self._notify(job)
        return job

    async def _force_credit_refresh(self) -> None:
        try:
            await self._ledger.refresh()
        except StudioError as e:
            logger.warning("Credit refresh after rejection failed: %s", e)

    def _adopt_credits(self, ack: dict[str, Any]) -> None:
        credits = ack.get("credits")
        if isinstance(credits, int) and credits >= 0:
            current = self._ledger.get()
            self._ledger.apply(
                CreditSummary(
                    credits=credits,
                    trial_credits=current.trial_credits,
                    trial_status=current.trial_status,
                )
            )

    # --- Timeouts ---

    def _start_timer(self, job: Job) -> None:
        loop = asyncio.get_running_loop()
        self._timers[job.correlation_id] = loop.call_later(
            self.timeout_seconds, self.expire, job.correlation_id
        )

    def _cancel_timer(self, correlation_id: str) -> None:
        timer = self._timers.pop(correlation_id, None)
        if timer:
            timer.cancel()

    def expire(self, correlation_id: str) -> None:
        """Fail a job that has been pending too long."""
        self._timers.pop(correlation_id, None)
        job = self._jobs.get(correlation_id)
        if job is None or job.is_terminal:
            return
        logger.warning("Job %s timed out after %ss", correlation_id, self.timeout_seconds)
        self._fail(
            job,
            ErrorKind.TIMEOUT,
            f"Generation is taking longer than expected ({self.timeout_seconds:g}s)",
        )

    # --- Realtime events ---

    def handle_completed(self, data: dict[str, Any]) -> None:
        self.handle_event(data, JobStatus.COMPLETED)

    def handle_failed(self, data: dict[str, Any]) -> None:
        self.handle_event(data, JobStatus.FAILED)

    def handle_event(self, data: dict[str, Any], status: Optional[JobStatus] = None) -> None:
        """
        Merge one job event. Unknown or already-finished jobs are ignored.

        Args:
            data: Event body ``{correlationId, adId, status, payload, error}``
            status: Terminal status implied by the event name
        """
        try:
            event = JobEvent.model_validate(data)
        except ValidationError as e:
            logger.warning("Ignoring malformed job event: %s", e)
            return

        job = self._jobs.get(event.correlation_id)
        if job is None:
            logger.debug("Ignoring event for unknown job %s", event.correlation_id)
            return
        if job.is_terminal:
            logger.debug("Ignoring duplicate event for job %s", event.correlation_id)
            return

        status = event.status or status
        if status == JobStatus.FAILED:
            error = event.error
            kind = (error.kind if error else None) or ErrorKind.FETCH_ERROR
            message = (error.message if error else None) or "Generation failed"
            if kind == ErrorKind.INSUFFICIENT_CREDITS:
                self._ledger.notify_changed()
            self._fail(job, kind, message)
        elif status == JobStatus.COMPLETED:
            self._complete(job, event.payload)
        else:
            logger.debug("Ignoring non-terminal event for job %s", event.correlation_id)

    # --- Terminal transitions ---

    def _complete(self, job: Job, payload: dict[str, Any]) -> None:
        if job.is_terminal:
            return
        self._cancel_timer(job.correlation_id)
        job.status = JobStatus.COMPLETED
        job.result = payload
        job.updated_at = datetime.now()
        self._notify(job)
        self._resolve(job)

    def _fail(self, job: Job, kind: ErrorKind, message: str) -> None:
        if job.is_terminal:
            return
        self._cancel_timer(job.correlation_id)
        job.status = JobStatus.FAILED
        job.error_kind = kind
        job.error_message = message
        job.updated_at = datetime.now()
        logger.info("Job %s (%s) failed: %s", job.correlation_id, job.kind.value, kind.value)
        self._notify(job)
        self._resolve(job)

    def _resolve(self, job: Job) -> None:
        """Merge now, or park an edit until every earlier edit of its ad is merged."""
        if job.kind != JobKind.EDIT or job.sequence is None:
            self._apply(job)
            return

        if job.orphaned:
            skipped = self._skipped[job.ad_id]
            if job.sequence not in skipped:
                # Its slot was already passed; merge unless something newer landed.
                self._apply(job)
                return
            skipped.discard(job.sequence)

        self._resolved[job.ad_id][job.sequence] = job
        self._drain(job.ad_id)

    def _drain(self, ad_id: str) -> None:
        resolved = self._resolved[ad_id]
        skipped = self._skipped[ad_id]
        while True:
            sequence = self._next_to_apply[ad_id]
            if sequence in resolved:
                job = resolved.pop(sequence)
            elif sequence in skipped:
                skipped.discard(sequence)
                job = None
            else:
                break
            # Advance first so a failing merge can't stall the ad's queue.
            self._next_to_apply[ad_id] = sequence + 1
            if job is not None:
                self._apply(job)

    def _is_stale(self, job: Job) -> bool:
        """An orphaned edit older than an edit already merged into its ad."""
        if not job.orphaned or job.kind != JobKind.EDIT or job.sequence is None:
            return False
        return self._last_merged.get(job.ad_id, -1) > job.sequence

    def _apply(self, job: Job) -> None:
        callback = self._callbacks.pop(job.correlation_id, None)

        if job.status == JobStatus.COMPLETED:
            if job.orphaned and job.ad_id and not self._workspace.has_ad(job.ad_id):
                logger.info("Dropping late result of orphaned job %s", job.correlation_id)
                return
            if self._is_stale(job):
                logger.info("Dropping stale result of orphaned job %s", job.correlation_id)
                return
            try:
                self._merge(job)
                job.applied = True
            except NotFoundError as e:
                logger.warning("Result of job %s not applied: %s", job.correlation_id, e)
            except ValidationError as e:
                logger.warning("Result of job %s is malformed: %s", job.correlation_id, e)
            if job.applied and job.kind == JobKind.EDIT and job.sequence is not None:
                self._last_merged[job.ad_id] = max(self._last_merged.get(job.ad_id, -1), job.sequence)
            self._notify(job)

        if callback and not job.orphaned:
            try:
                callback(job)
            except Exception:
                logger.exception("Resolution callback failed for job %s", job.correlation_id)

    def _merge(self, job: Job) -> None:
        payload = job.result
        if job.kind == JobKind.AD_COPY:
            copy_data = payload.get("adCopy", payload)
            self._workspace.update_ad_copy(
                AdCopy.model_validate({"templateId": job.template_id, **copy_data})
            )
        elif job.kind == JobKind.AD_IMAGE:
            ad_data = dict(payload.get("ad", payload))
            ad_data.setdefault("templateId", job.template_id)
            if "adCopy" not in ad_data and "ad_copy" not in ad_data:
                ad_data["adCopy"] = self._workspace.get_template_copy(job.template_id)
            ad = self._workspace.upsert_generated_ad(GeneratedAd.model_validate(ad_data))
            job.ad_id = ad.id
        elif job.kind == JobKind.EDIT:
            copy_data = payload.get("adCopy")
            ad_copy = None
            if copy_data:
                ad = self._workspace.get_generated_ad(job.ad_id)
                ad_copy = AdCopy.model_validate({"templateId": ad.template_id, **copy_data})
            self._workspace.apply_ad_update(
                job.ad_id,
                image_url=payload.get("imageUrl"),
                final_image_url=payload.get("finalImageUrl"),
                textless_image_url=payload.get("textlessImageUrl"),
                ad_copy=ad_copy,
            )

    # --- Abandonment ---

    def _mark_orphaned(self, job: Job) -> None:
        job.orphaned = True
        self._cancel_timer(job.correlation_id)
        self._callbacks.pop(job.correlation_id, None)
        if job.kind == JobKind.EDIT and job.sequence is not None:
            self._skipped[job.ad_id].add(job.sequence)

    def _orphan(self, job: Job) -> None:
        """Orphan one job whose caller went away mid-request."""
        if job.is_terminal or job.orphaned:
            return
        self._mark_orphaned(job)
        if job.kind == JobKind.EDIT:
            self._drain(job.ad_id)
        self._notify(job)

    def abandon(self, ad_id: Optional[str] = None) -> list[Job]:
        """
        Orphan the unfinished jobs of an abandoned view.

        The backend keeps working on them; their pending state disappears
        from the UI and later edits of the same ad stop waiting on them.

        Args:
            ad_id: Only orphan jobs for this ad (all jobs if omitted)

        Returns:
            The jobs that were orphaned
        """
        orphaned = []
        for job in self._jobs.values():
            if job.is_terminal or job.orphaned:
                continue
            if ad_id is not None and job.ad_id != ad_id:
                continue
            self._mark_orphaned(job)
            orphaned.append(job)

        for touched in {job.ad_id for job in orphaned if job.kind == JobKind.EDIT}:
            self._drain(touched)
        for job in orphaned:
            self._notify(job)
        return orphaned

    def close(self) -> None:
        """Cancel timers and stop receiving events."""
        for correlation_id in list(self._timers):
            self._cancel_timer(correlation_id)
        self.detach()
