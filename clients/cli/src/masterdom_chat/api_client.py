"""Async REST client for the marketplace chat backend."""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.parse
from typing import Any, Dict, List, Optional

import aiohttp

from .errors import ApiError, ProtocolError, TokenRejectedError, TransportError
from .models import ConversationDetail, ConversationPreview, Message

logger = logging.getLogger(__name__)


def _build_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}{path}"


def _chat_path(conversation_id: str, suffix: str = "") -> str:
    return f"/api/chats/{urllib.parse.quote(conversation_id, safe='')}{suffix}"


def _decode_text(data: bytes, charset: Optional[str]) -> str:
    # Proxy error pages are not always valid in the charset they declare.
    try:
        return data.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return data.decode("utf-8", errors="replace")


def _decode_body(raw: str) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _error_message(body: Any, fallback: str) -> str:
    if isinstance(body, dict):
        for key in ("details", "error", "message"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    if isinstance(body, str) and body:
        return body
    return fallback


def _require_list(body: Any, what: str) -> List[Any]:
    # The backend encodes an empty result set as ``null``.
    if body is None:
        return []
    if not isinstance(body, list):
        raise ProtocolError(f"{what} response must be a JSON array")
    return body


class ApiClient:
    """Thin wrapper over ``aiohttp.ClientSession`` speaking the chat contract.

    Every authenticated method takes the raw bearer token explicitly; the
    client itself holds no session state. A 401 answer raises
    ``TokenRejectedError`` so callers can force a logout.
    """

    def __init__(
        self,
        base_url: str,
        *,
        http: Optional[aiohttp.ClientSession] = None,
        timeout_s: Optional[float] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._http = http
        self._owns_http = http is None
        self._timeout = aiohttp.ClientTimeout(total=timeout_s) if timeout_s else None

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _session(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            if self._timeout is not None:
                self._http = aiohttp.ClientSession(timeout=self._timeout)
            else:
                self._http = aiohttp.ClientSession()
            self._owns_http = True
        return self._http

    async def close(self) -> None:
        if self._owns_http and self._http is not None and not self._http.closed:
            await self._http.close()
            self._http = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        token: Optional[str] = None,
        payload: Optional[Dict[str, object]] = None,
    ) -> Any:
        headers: Dict[str, str] = {}
        if token is not None:
            headers["Authorization"] = f"Bearer {token}"
        url = _build_url(self.base_url, path)
        try:
            async with self._session().request(method, url, json=payload, headers=headers) as response:
                status = response.status
                reason = response.reason or "request failed"
                raw = _decode_text(await response.read(), response.charset)
        except asyncio.TimeoutError as exc:
            raise TransportError(f"{method} {path} timed out") from exc
        except aiohttp.ClientError as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        body = _decode_body(raw)
        if status == 401:
            raise TokenRejectedError(_error_message(body, "Invalid or expired token"))
        if status < 200 or status >= 300:
            logger.debug("%s %s -> %s", method, path, status)
            raise ApiError(status, _error_message(body, reason))
        if isinstance(body, str):
            raise ProtocolError(f"{method} {path} returned a non-JSON body")
        return body

    async def login(self, email: str, password: str) -> str:
        """Exchange credentials for a bearer token."""

        body = await self._request("POST", "/api/auth/login", payload={"email": email, "password": password})
        token = body.get("token") if isinstance(body, dict) else None
        if not isinstance(token, str) or not token:
            raise ProtocolError("login response has no token")
        return token

    async def list_conversations(self, token: str) -> List[ConversationPreview]:
        body = await self._request("GET", "/api/chats", token=token)
        return [ConversationPreview.from_json(entry) for entry in _require_list(body, "conversation list")]

    async def get_conversation(self, token: str, conversation_id: str) -> ConversationDetail:
        body = await self._request("GET", _chat_path(conversation_id), token=token)
        return ConversationDetail.from_json(body)

    async def list_messages(self, token: str, conversation_id: str) -> List[Message]:
        body = await self._request("GET", _chat_path(conversation_id, "/messages"), token=token)
        return [Message.from_json(entry, conversation_id) for entry in _require_list(body, "message history")]

    async def send_message(self, token: str, conversation_id: str, content: str) -> Message:
        body = await self._request(
            "POST",
            _chat_path(conversation_id, "/messages"),
            token=token,
            payload={"content": content},
        )
        return Message.from_json(body, conversation_id)

    async def initiate_conversation(self, token: str, offer_id: str, recipient_id: str) -> str:
        body = await self._request(
            "POST",
            "/api/chats/initiate",
            token=token,
            payload={"offerId": offer_id, "recipientId": recipient_id},
        )
        conversation_id = body.get("conversationId") if isinstance(body, dict) else None
        if not isinstance(conversation_id, str) or not conversation_id:
            raise ProtocolError("initiate response has no conversationId")
        return conversation_id
