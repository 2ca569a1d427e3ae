from __future__ import annotations

import logging

from .api_client import ApiClient
from .errors import TokenRejectedError, UnauthenticatedError, ValidationError
from .session import SessionStore

logger = logging.getLogger(__name__)


async def start_conversation(session: SessionStore, api: ApiClient, offer_id: str, recipient_id: str) -> str:
    """Create (or reuse) the conversation about ``offer_id`` with ``recipient_id``.

    Returns the conversation id to hand to ``ChatViewController.select``.
    """

    claims = session.require_identity()
    offer_id = offer_id.strip()
    recipient_id = recipient_id.strip()
    if not offer_id or not recipient_id:
        raise ValidationError("offer id and recipient id are required")
    if recipient_id == claims.subject_id:
        raise ValidationError("cannot start a chat with yourself")

    token = session.token
    assert token is not None
    try:
        conversation_id = await api.initiate_conversation(token, offer_id, recipient_id)
    except TokenRejectedError as exc:
        session.handle_rejected_token()
        raise UnauthenticatedError("session rejected by backend") from exc
    logger.info("conversation %s ready for offer %s", conversation_id, offer_id)
    return conversation_id
