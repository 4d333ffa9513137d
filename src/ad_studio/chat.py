"""Chat-driven editing of one generated ad."""

import logging
from datetime import datetime
from typing import Callable, Optional

from .coordinator import GenerationCoordinator
from .errors import ErrorKind, NotFoundError
from .models import ChatThread, GeneratedAd, Job, JobStatus, MessageSender
from .workspace import AdWorkspace

logger = logging.getLogger(__name__)

GENERATED_ADS_ROUTE = "/generated-ads"

FAILURE_MESSAGES = {
    ErrorKind.UNAUTHORIZED: "Your session has expired. Please sign in again and retry.",
    ErrorKind.INSUFFICIENT_CREDITS: "You're out of credits. Top up your balance to keep editing this ad.",
    ErrorKind.FETCH_ERROR: "Something went wrong while editing this ad. Please try again.",
    ErrorKind.TIMEOUT: "This edit is taking longer than expected. You can try again in a moment.",
    ErrorKind.NOT_FOUND: "This ad is no longer available.",
}

UNAPPLIED_MESSAGE = "The edit finished but couldn't be applied to this ad. Please try again."


def failure_message(kind: Optional[ErrorKind]) -> str:
    return FAILURE_MESSAGES.get(kind, FAILURE_MESSAGES[ErrorKind.FETCH_ERROR])


class ChatThreadController:
    """
    Send edit instructions for one ad and record the replies in its thread.

    Opening a controller without ``thread_id`` starts a new thread.
    """

    def __init__(
        self,
        workspace: AdWorkspace,
        coordinator: GenerationCoordinator,
        ad_id: str,
        thread_id: Optional[str] = None,
        on_navigate: Optional[Callable[[str], None]] = None,
    ):
        """
        Args:
            workspace: Workspace holding the ad
            coordinator: Coordinator that issues the edit jobs
            ad_id: Ad being edited
            thread_id: Existing thread to continue
            on_navigate: Called with a route when the user leaves the chat

        Raises:
            NotFoundError: If the ad or thread does not exist
        """
        self._workspace = workspace
        self._coordinator = coordinator
        self._on_navigate = on_navigate
        self.ad_id = ad_id

        workspace.get_generated_ad(ad_id)
        if thread_id:
            self.thread_id = workspace.get_chat_thread(thread_id, ad_id=ad_id).id
        else:
            title = f"Edit {datetime.now():%Y-%m-%d %H:%M}"
            self.thread_id = workspace.create_chat_thread(ad_id, title).id

    @property
    def ad(self) -> GeneratedAd:
        return self._workspace.get_generated_ad(self.ad_id)

    @property
    def thread(self) -> ChatThread:
        return self._workspace.get_chat_thread(self.thread_id, ad_id=self.ad_id)

    @property
    def is_busy(self) -> bool:
        return bool(self._coordinator.pending_jobs(ad_id=self.ad_id))

    async def send_message(self, text: str) -> Optional[Job]:
        """
        Post an edit instruction.

        The user's message is shown right away; the reply is appended when
        the edit job resolves.

        Returns:
            The edit job, or None if ``text`` was blank
        """
        instruction = text.strip()
        if not instruction:
            logger.debug("Ignoring blank chat message for ad %s", self.ad_id)
            return None

        self._workspace.add_chat_message(self.ad_id, self.thread_id, MessageSender.USER, instruction)

        def on_resolved(job: Job) -> None:
            self._record_outcome(job, instruction)

        return await self._coordinator.request_edit(
            self.ad_id,
            instruction,
            thread_id=self.thread_id,
            on_resolved=on_resolved,
        )

    def _record_outcome(self, job: Job, instruction: str) -> None:
        if job.status == JobStatus.COMPLETED and not job.applied:
            content = UNAPPLIED_MESSAGE
        elif job.status == JobStatus.COMPLETED:
            content = (
                job.result.get("message")
                or job.result.get("summary")
                or f'I\'ve processed your request: "{instruction}". Here\'s the updated ad.'
            )
        else:
            content = failure_message(job.error_kind)

        try:
            self._workspace.add_chat_message(self.ad_id, self.thread_id, MessageSender.SYSTEM, content)
        except NotFoundError:
            logger.info("Thread %s left the workspace before its edit resolved", self.thread_id)

    def go_back(self) -> None:
        """Leave the chat. Pending edits keep running."""
        if self._on_navigate:
            self._on_navigate(GENERATED_ADS_ROUTE)
