import asyncio

from helpers.fake_backend import ANNA, BackendTestCase, make_token, wait_for_calls
from masterdom_chat.directory import (
    STATUS_ERROR,
    STATUS_OK,
    STATUS_STALE,
    STATUS_UNAUTHENTICATED,
    ConversationDirectory,
)
from masterdom_chat.errors import ApiError
from masterdom_chat.session import SessionStore
from masterdom_chat.token_store import MemoryTokenStore


def _preview(conversation_id: str, at: str) -> dict:
    return {
        "conversationId": conversation_id,
        "otherParticipantId": "u-x",
        "otherParticipantName": "X",
        "lastMessageContent": "...",
        "lastMessageAt": at,
        "offerTitle": "Offer",
    }


class ConversationDirectoryTests(BackendTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.storage = MemoryTokenStore()
        self.session = SessionStore(self.storage)
        self.directory = ConversationDirectory(self.session, self.api)

    async def asyncTearDown(self):
        self.directory.unmount()
        await super().asyncTearDown()

    async def test_list_is_server_order_unchanged(self):
        self.session.login(make_token(ANNA))
        # Deliberately not sorted by time.
        self.backend.preview_override = [
            _preview("c7", "2024-01-01T08:00:00Z"),
            _preview("c3", "2024-02-01T08:00:00Z"),
            _preview("c5", "2023-12-01T08:00:00Z"),
        ]

        result = await self.directory.list_conversations()

        self.assertEqual(result.status, STATUS_OK)
        self.assertTrue(result.ok)
        self.assertEqual([p.conversation_id for p in result.conversations], ["c7", "c3", "c5"])
        self.assertEqual(self.directory.conversations, result.conversations)

    async def test_unauthenticated_makes_no_request(self):
        result = await self.directory.list_conversations()

        self.assertEqual(result.status, STATUS_UNAUTHENTICATED)
        self.assertEqual(result.conversations, ())
        self.assertEqual(self.backend.count("list"), 0)

    async def test_failure_keeps_previous_list(self):
        self.session.login(make_token(ANNA))
        first = await self.directory.list_conversations()
        self.backend.fail("list", 503)

        result = await self.directory.list_conversations()

        self.assertEqual(result.status, STATUS_ERROR)
        self.assertEqual(result.conversations, first.conversations)
        self.assertIsInstance(result.error.cause, ApiError)
        self.assertEqual(result.error.cause.status, 503)
        self.assertEqual(self.directory.conversations, first.conversations)
        self.assertIsNotNone(self.session.current_identity())

    async def test_rejected_token_logs_out(self):
        token = make_token(ANNA)
        self.session.login(token)
        self.backend.revoked.add(token)

        result = await self.directory.list_conversations()

        self.assertEqual(result.status, STATUS_UNAUTHENTICATED)
        self.assertIsNone(self.session.current_identity())
        self.assertIsNone(self.storage.load())

    async def test_mount_refetches_on_login_and_clears_on_logout(self):
        published = []
        self.directory.subscribe(published.append)

        first = await self.directory.mount()
        self.assertEqual(first.status, STATUS_UNAUTHENTICATED)

        self.session.login(make_token(ANNA))
        refresh = self.directory.pending_refresh
        self.assertIsNotNone(refresh)
        result = await refresh
        self.assertEqual(result.status, STATUS_OK)
        self.assertEqual([p.conversation_id for p in self.directory.conversations], ["c2", "c1"])

        self.session.logout()
        self.assertEqual(self.directory.conversations, ())
        self.assertEqual(self.directory.last_result.status, STATUS_UNAUTHENTICATED)
        self.assertEqual([r.status for r in published], [STATUS_UNAUTHENTICATED, STATUS_OK, STATUS_UNAUTHENTICATED])

    async def test_logout_during_fetch_discards_late_list(self):
        self.session.login(make_token(ANNA))
        await self.directory.mount()
        gate = self.backend.gate("list")
        pending = asyncio.create_task(self.directory.list_conversations())
        await wait_for_calls(self.backend, "list", count=2)

        self.session.logout()
        gate.set()
        result = await pending

        self.assertEqual(result.status, STATUS_STALE)
        self.assertEqual(self.directory.conversations, ())

    async def test_superseded_fetch_still_reports_rejected_token(self):
        token = make_token(ANNA)
        self.session.login(token)
        gate = self.backend.gate("list")
        superseded = asyncio.create_task(self.directory.list_conversations())
        await wait_for_calls(self.backend, "list")

        latest = await self.directory.list_conversations()
        self.assertEqual(latest.status, STATUS_OK)

        self.backend.revoked.add(token)
        gate.set()
        result = await superseded

        self.assertEqual(result.status, STATUS_STALE)
        self.assertIsNone(self.session.current_identity())
        self.assertIsNone(self.storage.load())
