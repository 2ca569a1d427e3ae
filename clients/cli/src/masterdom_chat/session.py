"""Single-writer owner of the bearer token and the identity derived from it."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional, Protocol

from .claims import Claims, decode_claims
from .errors import MalformedTokenError, UnauthenticatedError
from .notify import Subscribers, Subscription
from .token_store import MemoryTokenStore

logger = logging.getLogger(__name__)

Listener = Callable[[Optional[Claims]], None]


class TokenStorage(Protocol):
    def load(self) -> Optional[str]: ...

    def save(self, token: str) -> None: ...

    def clear(self) -> None: ...


class SessionStore:
    """Owns the session: raw token plus decoded claims.

    ``claims`` is present only while the token decodes and has not expired at
    the last check. Any violation clears both and erases the persisted token.
    Expiry is re-checked whenever the token changes and whenever a gated
    caller asks for ``require_identity()``; ``watch_expiry()`` additionally
    arms a timer on the running event loop.
    """

    def __init__(
        self,
        storage: Optional[TokenStorage] = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage: TokenStorage = storage if storage is not None else MemoryTokenStore()
        self._clock = clock
        self._token: Optional[str] = None
        self._claims: Optional[Claims] = None
        self._changes: Subscribers[Optional[Claims]] = Subscribers("session")
        self._watching = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._expiry_handle: Optional[asyncio.TimerHandle] = None

        stored = self._storage.load()
        if stored is not None:
            self._token = stored
            self._validate()

    @property
    def token(self) -> Optional[str]:
        return self._token if self._claims is not None else None

    def current_identity(self) -> Optional[Claims]:
        return self._claims

    def subscribe(self, listener: Listener) -> Subscription[Optional[Claims]]:
        return self._changes.subscribe(listener)

    def unsubscribe(self, subscription: Subscription[Optional[Claims]]) -> None:
        self._changes.unsubscribe(subscription)

    def login(self, token: str) -> Optional[Claims]:
        previous = self._claims
        self._storage.save(token)
        self._token = token
        self._claims = None
        claims = self._validate()
        if claims is not None:
            logger.info("session started for %s (role=%s)", claims.subject_id, claims.role)
            self._arm_expiry_timer()
        if claims is not None or previous is not None:
            self._changes.broadcast(claims)
        return claims

    def logout(self) -> None:
        had_session = self._token is not None or self._claims is not None
        self._clear()
        if had_session:
            logger.info("session cleared")
            self._changes.broadcast(None)

    def require_identity(self) -> Claims:
        """Return the current claims, re-checking expiry, or raise ``UnauthenticatedError``."""

        claims = self._claims
        if claims is not None and claims.is_expired(self._clock()):
            logger.info("session for %s expired", claims.subject_id)
            self.logout()
            claims = None
        if claims is None:
            raise UnauthenticatedError()
        return claims

    def handle_rejected_token(self) -> None:
        """The backend no longer accepts the token: treat it as expiry."""

        if self._claims is not None:
            logger.warning("backend rejected token for %s", self._claims.subject_id)
        self.logout()

    def watch_expiry(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Check expiry proactively with a timer keyed to the token's ``exp``."""

        self._watching = True
        self._loop = loop
        self._arm_expiry_timer()

    def stop_watching_expiry(self) -> None:
        self._watching = False
        self._cancel_expiry_timer()

    def _validate(self) -> Optional[Claims]:
        token = self._token
        if token is None:
            return None
        try:
            claims = decode_claims(token)
        except MalformedTokenError as exc:
            logger.warning("discarding malformed token: %s", exc)
            self._clear()
            return None
        if claims.is_expired(self._clock()):
            logger.info("discarding expired token for %s", claims.subject_id)
            self._clear()
            return None
        self._claims = claims
        return claims

    def _clear(self) -> None:
        self._storage.clear()
        self._token = None
        self._claims = None
        self._cancel_expiry_timer()

    def _arm_expiry_timer(self) -> None:
        self._cancel_expiry_timer()
        if not self._watching or self._claims is None:
            return
        loop = self._loop
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.debug("no running loop; expiry timer not armed")
                return
        delay = max(0.0, self._claims.expires_at - self._clock())
        self._expiry_handle = loop.call_later(delay, self._on_expiry_timer)

    def _cancel_expiry_timer(self) -> None:
        if self._expiry_handle is not None:
            self._expiry_handle.cancel()
            self._expiry_handle = None

    def _on_expiry_timer(self) -> None:
        self._expiry_handle = None
        claims = self._claims
        if claims is None:
            return
        if claims.is_expired(self._clock()):
            logger.info("session for %s expired while idle", claims.subject_id)
            self.logout()
            return
        # Timer fired early relative to the injected clock.
        self._arm_expiry_timer()
