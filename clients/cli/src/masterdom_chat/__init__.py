"""Session and conversation synchronization core for the marketplace chat client."""

from .api_client import ApiClient
from .channel import ChannelState, MessageChannel
from .chat_view import ChatView, ChatViewController, MessageView
from .claims import Claims, decode_claims
from .directory import ConversationDirectory, DirectoryResult
from .initiator import start_conversation
from .models import ConversationDetail, ConversationPreview, Message, Participant
from .session import SessionStore
from .token_store import MemoryTokenStore, TokenStore

__all__ = [
    "ApiClient",
    "ChannelState",
    "MessageChannel",
    "ChatView",
    "ChatViewController",
    "MessageView",
    "Claims",
    "decode_claims",
    "ConversationDirectory",
    "DirectoryResult",
    "start_conversation",
    "ConversationDetail",
    "ConversationPreview",
    "Message",
    "Participant",
    "SessionStore",
    "MemoryTokenStore",
    "TokenStore",
]
