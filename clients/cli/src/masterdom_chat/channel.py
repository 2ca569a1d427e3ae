"""Stateful view of one conversation: ordered history plus send.

State machine::

    IDLE -> LOADING -> READY <-> SENDING
                    \\-> ERROR -> LOADING (re-open)
    any -> CLOSED

``SENDING`` keeps the loaded history visible; only the composer is locked.
At most one request is in flight per channel.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Tuple, TypeVar

from .api_client import ApiClient
from .errors import (
    ChannelBusyError,
    ChatClientError,
    TokenRejectedError,
    TransportError,
    UnauthenticatedError,
    ValidationError,
)
from .models import ConversationDetail, Message
from .notify import Subscribers, Subscription
from .session import SessionStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChannelState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    SENDING = "sending"
    ERROR = "error"
    CLOSED = "closed"


OPENABLE_STATES = {ChannelState.IDLE, ChannelState.READY, ChannelState.ERROR}


class MessageChannel:
    def __init__(
        self,
        session: SessionStore,
        api: ApiClient,
        *,
        request_timeout: Optional[float] = None,
    ) -> None:
        self._session = session
        self._api = api
        self._request_timeout = request_timeout
        self.state = ChannelState.IDLE
        self.conversation_id: Optional[str] = None
        self.detail: Optional[ConversationDetail] = None
        self.draft = ""
        self.error: Optional[ChatClientError] = None
        self.send_error: Optional[ChatClientError] = None
        self._messages: List[Message] = []
        self._inflight: Optional[asyncio.Future[Any]] = None
        self._changes: Subscribers[MessageChannel] = Subscribers("channel")

    @property
    def messages(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def closed(self) -> bool:
        return self.state is ChannelState.CLOSED

    def subscribe(self, listener: Callable[["MessageChannel"], None]) -> Subscription["MessageChannel"]:
        return self._changes.subscribe(listener)

    def unsubscribe(self, subscription: Subscription["MessageChannel"]) -> None:
        self._changes.unsubscribe(subscription)

    def set_draft(self, text: str) -> None:
        if self.state is ChannelState.SENDING:
            logger.debug("ignoring draft change while sending to %s", self.conversation_id)
            return
        self.draft = text
        self._changes.broadcast(self)

    async def open(self, conversation_id: str) -> ChannelState:
        """Load detail and history together; both succeed or the channel errors."""

        if self.state not in OPENABLE_STATES:
            raise ChannelBusyError(self.state.value)

        self.conversation_id = conversation_id
        self.detail = None
        self._messages = []
        self.error = None
        self.send_error = None
        try:
            self._session.require_identity()
        except UnauthenticatedError as exc:
            return self._fail(exc)
        token = self._session.token
        assert token is not None
        self._transition(ChannelState.LOADING)

        try:
            detail, history = await self._run(self._fetch_detail_and_history(token, conversation_id))
        except asyncio.CancelledError:
            if self.closed:
                logger.debug("open of %s abandoned by close()", conversation_id)
                return self.state
            self._transition(ChannelState.IDLE)
            raise
        except TokenRejectedError:
            self._session.handle_rejected_token()
            return self._fail(UnauthenticatedError("session rejected by backend"))
        except TransportError as exc:
            logger.warning("failed to open conversation %s: %s", conversation_id, exc)
            return self._fail(exc)

        if self.closed or self.conversation_id != conversation_id:
            logger.debug("discarding stale open result for %s", conversation_id)
            return self.state
        self.detail = detail
        # Stable sort keeps server order among equal timestamps.
        self._messages = sorted(history, key=lambda message: message.created_at)
        self._transition(ChannelState.READY)
        return self.state

    async def send(self, content: Optional[str] = None) -> Optional[Message]:
        """Send ``content`` (or the composer draft) and append the confirmed message.

        Local rejections raise before any request: ``ValidationError`` for blank
        text, ``ChannelBusyError`` unless ``READY``, ``UnauthenticatedError``
        without a session. A failed request returns ``None``, leaves the draft
        untouched and records ``send_error``.
        """

        text = self.draft if content is None else content
        if not text.strip():
            raise ValidationError("message content is empty")
        if self.state is not ChannelState.READY:
            raise ChannelBusyError(self.state.value)
        self._session.require_identity()
        token = self._session.token
        conversation_id = self.conversation_id
        assert token is not None and conversation_id is not None

        self.send_error = None
        self._transition(ChannelState.SENDING)
        try:
            message = await self._run(self._api.send_message(token, conversation_id, text))
        except asyncio.CancelledError:
            if self.closed:
                return None
            self._transition(ChannelState.READY)
            raise
        except TokenRejectedError:
            self._session.handle_rejected_token()
            self.send_error = UnauthenticatedError("session rejected by backend")
            self._fail(self.send_error)
            return None
        except TransportError as exc:
            logger.warning("send to %s failed: %s", conversation_id, exc)
            self.send_error = exc
            self._transition(ChannelState.READY)
            return None

        if self.closed or self.conversation_id != conversation_id:
            logger.debug("discarding stale send result for %s", conversation_id)
            return None
        self._messages.append(message)
        if content is None or self.draft == content:
            self.draft = ""
        self._transition(ChannelState.READY)
        return message

    def close(self) -> None:
        """Detach the channel; in-flight work is cancelled and never applied."""

        if self.closed:
            return
        self.state = ChannelState.CLOSED
        inflight = self._inflight
        self._inflight = None
        if inflight is not None and not inflight.done():
            inflight.cancel()
        self._changes.broadcast(self)

    async def _fetch_detail_and_history(
        self, token: str, conversation_id: str
    ) -> Tuple[ConversationDetail, List[Message]]:
        detail_task = asyncio.ensure_future(self._api.get_conversation(token, conversation_id))
        history_task = asyncio.ensure_future(self._api.list_messages(token, conversation_id))
        try:
            detail, history = await asyncio.gather(detail_task, history_task)
        except BaseException:
            detail_task.cancel()
            history_task.cancel()
            raise
        return detail, history

    async def _run(self, awaitable: Awaitable[T]) -> T:
        if self._request_timeout is not None:
            awaitable = asyncio.wait_for(awaitable, self._request_timeout)
        future = asyncio.ensure_future(awaitable)
        self._inflight = future
        try:
            return await future
        except asyncio.TimeoutError as exc:
            raise TransportError(f"request timed out after {self._request_timeout}s") from exc
        finally:
            if self._inflight is future:
                self._inflight = None

    def _fail(self, error: ChatClientError) -> ChannelState:
        self.detail = None
        self._messages = []
        self.error = error
        self._transition(ChannelState.ERROR)
        return self.state

    def _transition(self, state: ChannelState) -> None:
        if self.closed:
            return
        logger.debug("channel %s: %s -> %s", self.conversation_id, self.state.value, state.value)
        self.state = state
        self._changes.broadcast(self)
