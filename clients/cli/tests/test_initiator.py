from helpers.fake_backend import ANNA, BORIS, CLARA, BackendTestCase, make_token
from masterdom_chat.chat_view import ChatViewController
from masterdom_chat.errors import UnauthenticatedError, ValidationError
from masterdom_chat.initiator import start_conversation
from masterdom_chat.session import SessionStore
from masterdom_chat.token_store import MemoryTokenStore


class StartConversationTests(BackendTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.session = SessionStore(MemoryTokenStore())
        self.session.login(make_token(BORIS))

    async def test_existing_conversation_is_reused(self):
        conversation_id = await start_conversation(self.session, self.api, "o-plumbing", ANNA)

        self.assertEqual(conversation_id, "c1")

    async def test_new_conversation_opens_in_chat_view(self):
        conversation_id = await start_conversation(self.session, self.api, "o-roofing", CLARA)
        self.assertNotIn(conversation_id, {"c1", "c2"})

        controller = ChatViewController(self.session, self.api)
        try:
            view = await controller.select(conversation_id)
        finally:
            controller.dispose()

        self.assertEqual(view.conversation_id, conversation_id)
        self.assertEqual(view.counterpart.participant_id, CLARA)
        self.assertEqual(view.messages, ())

    async def test_self_chat_is_rejected_locally(self):
        with self.assertRaises(ValidationError):
            await start_conversation(self.session, self.api, "o-plumbing", BORIS)

        self.assertEqual(self.backend.count("initiate"), 0)

    async def test_blank_ids_are_rejected_locally(self):
        with self.assertRaises(ValidationError):
            await start_conversation(self.session, self.api, " ", ANNA)
        with self.assertRaises(ValidationError):
            await start_conversation(self.session, self.api, "o-plumbing", "")

        self.assertEqual(self.backend.count("initiate"), 0)

    async def test_requires_session(self):
        self.session.logout()

        with self.assertRaises(UnauthenticatedError):
            await start_conversation(self.session, self.api, "o-plumbing", ANNA)

        self.assertEqual(self.backend.count("initiate"), 0)

    async def test_rejected_token_logs_out(self):
        self.backend.revoked.add(self.session.token)

        with self.assertRaises(UnauthenticatedError):
            await start_conversation(self.session, self.api, "o-plumbing", ANNA)

        self.assertIsNone(self.session.current_identity())
