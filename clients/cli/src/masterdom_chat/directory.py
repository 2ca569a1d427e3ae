"""Conversation list for the authenticated user."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .api_client import ApiClient
from .claims import Claims
from .errors import DirectoryUnavailableError, TokenRejectedError, TransportError, UnauthenticatedError
from .models import ConversationPreview
from .notify import Subscribers, Subscription
from .session import SessionStore

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_UNAUTHENTICATED = "unauthenticated"
STATUS_ERROR = "error"
STATUS_STALE = "stale"


@dataclass(frozen=True)
class DirectoryResult:
    status: str
    conversations: Tuple[ConversationPreview, ...]
    error: Optional[DirectoryUnavailableError] = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK


class ConversationDirectory:
    """Fetches and holds the user's conversation previews.

    The list is replaced wholesale on every successful fetch and keeps the
    server's order. It is never patched from message traffic; callers that
    need freshness call ``list_conversations()`` again. Once mounted, every
    identity change triggers a refetch.
    """

    def __init__(self, session: SessionStore, api: ApiClient) -> None:
        self._session = session
        self._api = api
        self._conversations: Tuple[ConversationPreview, ...] = ()
        self._generation = 0
        self._session_subscription: Optional[Subscription[Optional[Claims]]] = None
        self._refresh_task: Optional[asyncio.Task[DirectoryResult]] = None
        self._changes: Subscribers[DirectoryResult] = Subscribers("directory")
        self.last_result: Optional[DirectoryResult] = None

    @property
    def conversations(self) -> Tuple[ConversationPreview, ...]:
        return self._conversations

    @property
    def pending_refresh(self) -> Optional[asyncio.Task[DirectoryResult]]:
        return self._refresh_task

    @property
    def mounted(self) -> bool:
        return self._session_subscription is not None

    def subscribe(self, listener: Callable[[DirectoryResult], None]) -> Subscription[DirectoryResult]:
        return self._changes.subscribe(listener)

    def unsubscribe(self, subscription: Subscription[DirectoryResult]) -> None:
        self._changes.unsubscribe(subscription)

    async def mount(self) -> DirectoryResult:
        if self._session_subscription is None:
            self._session_subscription = self._session.subscribe(self._on_session_change)
        return await self.list_conversations()

    def unmount(self) -> None:
        if self._session_subscription is not None:
            self._session.unsubscribe(self._session_subscription)
            self._session_subscription = None
        self._cancel_refresh()

    async def list_conversations(self) -> DirectoryResult:
        self._generation += 1
        generation = self._generation
        try:
            claims = self._session.require_identity()
        except UnauthenticatedError:
            return self._publish(self._unauthenticated())
        token = self._session.token
        assert token is not None

        try:
            fetched = await self._api.list_conversations(token)
        except TokenRejectedError:
            # A rejected token is dead even when a newer fetch owns the list.
            if self._session.token == token:
                self._session.handle_rejected_token()
            if generation != self._generation:
                return self._stale()
            return self._publish(self._unauthenticated())
        except TransportError as exc:
            if generation != self._generation:
                return self._stale()
            logger.warning("conversation list fetch failed for %s: %s", claims.subject_id, exc)
            error = DirectoryUnavailableError(exc)
            return self._publish(DirectoryResult(STATUS_ERROR, self._conversations, error))

        if generation != self._generation:
            logger.debug("discarding stale conversation list for %s", claims.subject_id)
            return self._stale()
        self._conversations = tuple(fetched)
        logger.debug("loaded %d conversations for %s", len(self._conversations), claims.subject_id)
        return self._publish(DirectoryResult(STATUS_OK, self._conversations))

    def _unauthenticated(self) -> DirectoryResult:
        self._conversations = ()
        return DirectoryResult(STATUS_UNAUTHENTICATED, ())

    def _stale(self) -> DirectoryResult:
        return DirectoryResult(STATUS_STALE, self._conversations)

    def _publish(self, result: DirectoryResult) -> DirectoryResult:
        self.last_result = result
        self._changes.broadcast(result)
        return result

    def _cancel_refresh(self) -> None:
        task = self._refresh_task
        self._refresh_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _on_session_change(self, claims: Optional[Claims]) -> None:
        self._cancel_refresh()
        if claims is None:
            self._generation += 1
            self._publish(self._unauthenticated())
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("no running loop; directory refetch deferred to next list_conversations()")
            return
        self._refresh_task = loop.create_task(self.list_conversations())
