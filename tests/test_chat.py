"""Tests for chat-driven ad editing."""

import asyncio

import pytest
import respx
from httpx import Response

from ad_studio.api_client import StudioAPIClient
from ad_studio.chat import GENERATED_ADS_ROUTE, UNAPPLIED_MESSAGE, ChatThreadController, failure_message
from ad_studio.errors import ErrorKind, NotFoundError
from ad_studio.models import JobStatus, MessageSender
from ad_studio.workspace import THREAD_GREETING

from conftest import BASE_URL, TOKEN, studio

EDIT_URL = f"{BASE_URL}/ads/ad-1/edit"
CREDITS_URL = f"{BASE_URL}/user/credits"


def mock_backend(router, edit_response=None):
    edit = router.post(EDIT_URL).mock(
        return_value=edit_response or Response(202, json={"accepted": True})
    )
    router.get(CREDITS_URL).mock(return_value=Response(200, json={"credits": 4}))
    return edit


class TestChatThreadController:
    """Tests for ChatThreadController."""

    def test_opening_starts_thread_with_greeting(self, workspace):
        controller = ChatThreadController(workspace, coordinator=None, ad_id="ad-1")

        thread = controller.thread
        assert thread.title.startswith("Edit ")
        assert [m.content for m in thread.messages] == [THREAD_GREETING]

    def test_continue_existing_thread(self, workspace):
        existing = workspace.create_chat_thread("ad-1", "Earlier")
        controller = ChatThreadController(workspace, coordinator=None, ad_id="ad-1", thread_id=existing.id)
        assert controller.thread.id == existing.id

    def test_unknown_ad_or_thread(self, workspace):
        with pytest.raises(NotFoundError):
            ChatThreadController(workspace, coordinator=None, ad_id="ghost")
        with pytest.raises(NotFoundError):
            ChatThreadController(workspace, coordinator=None, ad_id="ad-1", thread_id="thread-x")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    async def test_blank_message_rejected(self, workspace, text):
        """Test blank input adds no message and issues no job."""
        with respx.mock(base_url=BASE_URL, assert_all_called=False) as router:
            edit_route = mock_backend(router)
            async with StudioAPIClient(base_url=BASE_URL, token=TOKEN) as api:
                async with studio(api, workspace) as (ledger, coordinator):
                    controller = ChatThreadController(workspace, coordinator, "ad-1")
                    before = len(controller.thread.messages)

                    result = await controller.send_message(text)

                    assert result is None
                    assert len(controller.thread.messages) == before
                    assert coordinator.jobs() == []

        assert not edit_route.called

    @pytest.mark.asyncio
    async def test_send_then_complete(self, workspace):
        """Test a successful edit updates the ad and adds a system reply."""
        with respx.mock(base_url=BASE_URL, assert_all_called=False) as router:
            mock_backend(router)
            async with StudioAPIClient(base_url=BASE_URL, token=TOKEN) as api:
                async with studio(api, workspace) as (ledger, coordinator):
                    controller = ChatThreadController(workspace, coordinator, "ad-1")

                    job = await controller.send_message("  Make the background blue ")

                    messages = controller.thread.messages
                    assert messages[-1].sender == MessageSender.USER
                    assert messages[-1].content == "Make the background blue"
                    assert controller.is_busy

                    coordinator.handle_completed(
                        {
                            "correlationId": job.correlation_id,
                            "adId": "ad-1",
                            "status": "completed",
                            "payload": {"imageUrl": "https://cdn.test/ad-1/blue.png"},
                        }
                    )

                    assert not controller.is_busy

        messages = controller.thread.messages
        assert [m.sender for m in messages] == [
            MessageSender.SYSTEM,
            MessageSender.USER,
            MessageSender.SYSTEM,
        ]
        assert messages[-1].content == (
            'I\'ve processed your request: "Make the background blue". Here\'s the updated ad.'
        )
        assert controller.ad.current_image_url == "https://cdn.test/ad-1/blue.png"

    @pytest.mark.asyncio
    async def test_reply_uses_backend_message(self, workspace):
        with respx.mock(base_url=BASE_URL, assert_all_called=False) as router:
            mock_backend(router)
            async with StudioAPIClient(base_url=BASE_URL, token=TOKEN) as api:
                async with studio(api, workspace) as (ledger, coordinator):
                    controller = ChatThreadController(workspace, coordinator, "ad-1")
                    job = await controller.send_message("Bigger logo")
                    coordinator.handle_completed(
                        {
                            "correlationId": job.correlation_id,
                            "payload": {"imageUrl": "logo.png", "message": "Logo enlarged."},
                        }
                    )

        assert controller.thread.messages[-1].content == "Logo enlarged."

    @pytest.mark.asyncio
    async def test_unmergeable_result_is_not_reported_as_success(self, workspace):
        """Test a completed edit whose result can't be applied says so in the thread."""
        with respx.mock(base_url=BASE_URL, assert_all_called=False) as router:
            mock_backend(router)
            async with StudioAPIClient(base_url=BASE_URL, token=TOKEN) as api:
                async with studio(api, workspace) as (ledger, coordinator):
                    controller = ChatThreadController(workspace, coordinator, "ad-1")
                    job = await controller.send_message("Punchier headline")
                    coordinator.handle_completed(
                        {
                            "correlationId": job.correlation_id,
                            "payload": {"adCopy": {"headline": 5}, "message": "Headline updated."},
                        }
                    )

        assert job.status == JobStatus.COMPLETED
        assert job.applied is False
        assert controller.ad.ad_copy.headline == "Original headline"
        assert controller.thread.messages[-1].content == UNAPPLIED_MESSAGE

    @pytest.mark.asyncio
    async def test_backend_failure_keeps_user_message(self, workspace):
        """Test a failed edit shows an error reply and leaves the ad alone."""
        with respx.mock(base_url=BASE_URL, assert_all_called=False) as router:
            mock_backend(router, edit_response=Response(500, text="boom"))
            async with StudioAPIClient(base_url=BASE_URL, token=TOKEN) as api:
                async with studio(api, workspace) as (ledger, coordinator):
                    controller = ChatThreadController(workspace, coordinator, "ad-1")
                    job = await controller.send_message("Add confetti")

        assert job.status == JobStatus.FAILED
        contents = [m.content for m in controller.thread.messages]
        assert contents[-2] == "Add confetti"
        assert contents[-1] == failure_message(ErrorKind.FETCH_ERROR)
        assert controller.ad.image_url.endswith("v0.png")

    @pytest.mark.asyncio
    async def test_timeout_reply(self, workspace):
        with respx.mock(base_url=BASE_URL, assert_all_called=False) as router:
            mock_backend(router)
            async with StudioAPIClient(base_url=BASE_URL, token=TOKEN) as api:
                async with studio(api, workspace, timeout_seconds=0.05) as (ledger, coordinator):
                    controller = ChatThreadController(workspace, coordinator, "ad-1")
                    await controller.send_message("Slow edit")
                    await asyncio.sleep(0.2)

        assert "taking longer than expected" in controller.thread.messages[-1].content

    @pytest.mark.asyncio
    async def test_out_of_credits_reply(self, workspace):
        with respx.mock(base_url=BASE_URL, assert_all_called=False) as router:
            edit_route = mock_backend(router)
            async with StudioAPIClient(base_url=BASE_URL, token=TOKEN) as api:
                async with studio(api, workspace, credits=0) as (ledger, coordinator):
                    controller = ChatThreadController(workspace, coordinator, "ad-1")
                    job = await controller.send_message("One more")

        assert not edit_route.called
        assert job.error_kind == ErrorKind.INSUFFICIENT_CREDITS
        assert controller.thread.messages[-1].content == failure_message(ErrorKind.INSUFFICIENT_CREDITS)

    def test_go_back_navigates_without_side_effects(self, workspace):
        routes = []
        controller = ChatThreadController(workspace, coordinator=None, ad_id="ad-1", on_navigate=routes.append)
        before = workspace.snapshot()

        controller.go_back()

        assert routes == [GENERATED_ADS_ROUTE]
        assert workspace.snapshot() == before

    def test_unknown_failure_kind_gets_generic_message(self):
        assert failure_message(None) == failure_message(ErrorKind.FETCH_ERROR)
