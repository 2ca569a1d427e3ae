"""Controller for the single active conversation screen."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Tuple

from .api_client import ApiClient
from .channel import ChannelState, MessageChannel
from .claims import Claims
from .errors import ChannelBusyError, UnauthenticatedError, ValidationError
from .models import Message, Participant
from .notify import Subscribers, Subscription
from .session import SessionStore

logger = logging.getLogger(__name__)

STATUS_UNAUTHENTICATED = "unauthenticated"
STATUS_IDLE = "idle"

ChannelFactory = Callable[..., MessageChannel]


@dataclass(frozen=True)
class MessageView:
    message_id: str
    sender_id: str
    sender_display_name: str
    content: str
    created_at: datetime
    own: bool

    @classmethod
    def from_message(cls, message: Message, subject_id: str) -> "MessageView":
        return cls(
            message_id=message.message_id,
            sender_id=message.sender_id,
            sender_display_name=message.sender_display_name,
            content=message.content,
            created_at=message.created_at,
            own=message.sender_id == subject_id,
        )


@dataclass(frozen=True)
class ChatView:
    status: str
    conversation_id: Optional[str] = None
    offer_title: Optional[str] = None
    counterpart: Optional[Participant] = None
    messages: Tuple[MessageView, ...] = ()
    draft: str = ""
    can_send: bool = False
    error: Optional[str] = None
    send_error: Optional[str] = None
    scroll_to_latest: bool = False


class ChatViewController:
    """Binds the session to at most one open ``MessageChannel``.

    Selecting a conversation is a hard replace: the previous channel is
    closed and anything it still has in flight is dropped. Each selection
    bumps a generation counter and completions are only applied while their
    generation and conversation id are still current.
    """

    def __init__(
        self,
        session: SessionStore,
        api: ApiClient,
        *,
        request_timeout: Optional[float] = None,
        channel_factory: ChannelFactory = MessageChannel,
    ) -> None:
        self._session = session
        self._api = api
        self._request_timeout = request_timeout
        self._channel_factory = channel_factory
        self._channel: Optional[MessageChannel] = None
        self._channel_subscription: Optional[Subscription[MessageChannel]] = None
        self._generation = 0
        self._bound_subject: Optional[str] = None
        self._seen_count = 0
        self._scroll_pending = False
        self._changes: Subscribers[ChatView] = Subscribers("chat_view")
        self._session_subscription = session.subscribe(self._on_session_change)

    @property
    def channel(self) -> Optional[MessageChannel]:
        return self._channel

    @property
    def active_conversation_id(self) -> Optional[str]:
        return self._channel.conversation_id if self._channel is not None else None

    def subscribe(self, listener: Callable[[ChatView], None]) -> Subscription[ChatView]:
        return self._changes.subscribe(listener)

    def unsubscribe(self, subscription: Subscription[ChatView]) -> None:
        self._changes.unsubscribe(subscription)

    async def select(self, conversation_id: str) -> ChatView:
        self._generation += 1
        generation = self._generation
        self._teardown()
        try:
            claims = self._session.require_identity()
        except UnauthenticatedError:
            return self.view()

        self._bound_subject = claims.subject_id
        channel = self._channel_factory(self._session, self._api, request_timeout=self._request_timeout)
        self._channel = channel
        self._channel_subscription = channel.subscribe(
            lambda changed, gen=generation, conv=conversation_id: self._on_channel_change(gen, conv, changed)
        )
        await channel.open(conversation_id)
        if generation != self._generation:
            logger.debug("selection of %s superseded before it finished loading", conversation_id)
        return self.view()

    async def retry(self) -> ChatView:
        channel = self._channel
        if channel is None or channel.state is not ChannelState.ERROR or channel.conversation_id is None:
            return self.view()
        return await self.select(channel.conversation_id)

    def close(self) -> None:
        self._generation += 1
        self._teardown()
        self._changes.broadcast(self.view(consume_scroll=False))

    def dispose(self) -> None:
        self.close()
        self._session.unsubscribe(self._session_subscription)

    def set_draft(self, text: str) -> None:
        if self._channel is not None:
            self._channel.set_draft(text)

    async def send(self) -> ChatView:
        channel = self._channel
        if channel is None:
            return self.view()
        try:
            await channel.send()
        except ValidationError:
            logger.debug("ignoring blank message")
        except ChannelBusyError as exc:
            logger.debug("send ignored: %s", exc)
        except UnauthenticatedError:
            logger.debug("send attempted without a session")
        return self.view()

    def counterpart(self) -> Optional[Participant]:
        claims = self._session.current_identity()
        channel = self._channel
        if claims is None or channel is None or channel.detail is None:
            return None
        return channel.detail.counterpart(claims.subject_id)

    def view(self, consume_scroll: bool = True) -> ChatView:
        """Snapshot for rendering.

        ``scroll_to_latest`` is raised once after the message count changes and
        is cleared by the snapshot that reports it.
        """

        claims = self._session.current_identity()
        if claims is None:
            return ChatView(status=STATUS_UNAUTHENTICATED)
        channel = self._channel
        if channel is None:
            return ChatView(status=STATUS_IDLE)

        scroll = self._scroll_pending
        if consume_scroll:
            self._scroll_pending = False
        detail = channel.detail
        return ChatView(
            status=channel.state.value,
            conversation_id=channel.conversation_id,
            offer_title=detail.subject_offer_title if detail is not None else None,
            counterpart=self.counterpart(),
            messages=tuple(MessageView.from_message(message, claims.subject_id) for message in channel.messages),
            draft=channel.draft,
            can_send=channel.state is ChannelState.READY and bool(channel.draft.strip()),
            error=str(channel.error) if channel.error is not None else None,
            send_error=str(channel.send_error) if channel.send_error is not None else None,
            scroll_to_latest=scroll,
        )

    def _teardown(self) -> None:
        channel = self._channel
        if channel is not None and self._channel_subscription is not None:
            channel.unsubscribe(self._channel_subscription)
        self._channel = None
        self._channel_subscription = None
        self._seen_count = 0
        self._scroll_pending = False
        if channel is not None:
            channel.close()

    def _on_channel_change(self, generation: int, conversation_id: str, channel: MessageChannel) -> None:
        if generation != self._generation or channel is not self._channel:
            logger.debug("dropping stale update for %s", conversation_id)
            return
        count = len(channel.messages)
        if count != self._seen_count:
            self._seen_count = count
            self._scroll_pending = True
        self._changes.broadcast(self.view(consume_scroll=False))

    def _on_session_change(self, claims: Optional[Claims]) -> None:
        # A refreshed token for the same user keeps the open conversation.
        if claims is not None and (self._channel is None or claims.subject_id == self._bound_subject):
            return
        if self._channel is not None:
            logger.info("session changed; closing conversation %s", self._channel.conversation_id)
        self._generation += 1
        self._teardown()
        self._changes.broadcast(self.view(consume_scroll=False))
