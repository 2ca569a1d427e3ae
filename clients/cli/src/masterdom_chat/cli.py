"""Command line front end for the chat client core."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Awaitable, Callable, TextIO

from .api_client import ApiClient
from .chat_view import STATUS_UNAUTHENTICATED, ChatView, ChatViewController
from .config import ClientConfig, load_config
from .directory import ConversationDirectory
from .errors import ChatClientError
from .initiator import start_conversation
from .session import SessionStore
from .token_store import TokenStore

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="masterdom-chat", description="Marketplace conversations from the terminal")
    parser.add_argument(
        "--profile",
        default="default",
        help="Profile name for storing the session token (default: default)",
    )
    parser.add_argument("--base-url", help="Backend base URL (env MASTERDOM_API_URL)")
    parser.add_argument("--token-path", help="Token file path (env MASTERDOM_TOKEN_PATH)")
    parser.add_argument("--timeout", type=float, help="Per-request timeout in seconds; 0 disables")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("-q", "--quiet", action="store_true", help="Warnings only")
    subparsers = parser.add_subparsers(dest="command", required=True)

    login = subparsers.add_parser("login", help="Log in and persist the bearer token")
    login.add_argument("--token", help="Use an existing bearer token")
    login.add_argument("--email", help="Account email")
    login.add_argument("--password", help="Account password")

    subparsers.add_parser("logout", help="Forget the stored token")
    subparsers.add_parser("whoami", help="Show the current identity")
    subparsers.add_parser("chats", help="List conversations, most recent first")

    show = subparsers.add_parser("show", help="Print a conversation's history")
    show.add_argument("conversation_id")

    send = subparsers.add_parser("send", help="Send a message to a conversation")
    send.add_argument("conversation_id")
    send.add_argument("text")

    start = subparsers.add_parser("start", help="Start a conversation about an offer")
    start.add_argument("--offer", required=True, dest="offer_id", help="Offer id")
    start.add_argument("--recipient", required=True, dest="recipient_id", help="Recipient user id")
    return parser


def _open_session(config: ClientConfig) -> SessionStore:
    return SessionStore(TokenStore(config.token_path))


def _run_with_api(
    config: ClientConfig,
    action: Callable[[ApiClient], Awaitable[int]],
    session: SessionStore | None = None,
) -> int:
    async def _runner() -> int:
        if session is not None and config.watch_expiry:
            session.watch_expiry()
        try:
            async with ApiClient(config.base_url, timeout_s=config.request_timeout_s) as api:
                return await action(api)
        finally:
            if session is not None:
                session.stop_watching_expiry()

    return asyncio.run(_runner())


def _format_view(view: ChatView) -> list[str]:
    counterpart = view.counterpart.display_name if view.counterpart and view.counterpart.display_name else "counterpart"
    lines = [f"# {view.conversation_id} with {counterpart} about {view.offer_title or '-'}"]
    for message in view.messages:
        marker = ">" if message.own else "<"
        stamp = message.created_at.strftime("%Y-%m-%d %H:%M")
        lines.append(f"{marker} [{stamp}] {message.sender_display_name or message.sender_id}: {message.content}")
    return lines


def _require_ready(view: ChatView) -> None:
    if view.status == STATUS_UNAUTHENTICATED:
        raise RuntimeError("Not logged in. Run login first.")
    if view.error:
        raise RuntimeError(view.error)


def handle_login(args: argparse.Namespace, output: TextIO) -> int:
    session = _open_session(args.config)
    token = args.token
    if not token:
        if not args.email or not args.password:
            raise RuntimeError("login needs --token or both --email and --password")

        async def _fetch(api: ApiClient) -> int:
            nonlocal token
            token = await api.login(args.email, args.password)
            return 0

        _run_with_api(args.config, _fetch)

    claims = session.login(token)
    if claims is None:
        raise RuntimeError("token is malformed or already expired")
    output.write(f"Logged in as {claims.subject_id} ({claims.role}).\n")
    return 0


def handle_logout(args: argparse.Namespace, output: TextIO) -> int:
    _open_session(args.config).logout()
    output.write("Logged out.\n")
    return 0


def handle_whoami(args: argparse.Namespace, output: TextIO) -> int:
    claims = _open_session(args.config).current_identity()
    if claims is None:
        output.write("Not logged in.\n")
        return 1
    output.write(f"user_id: {claims.subject_id}\nrole: {claims.role}\nexpires_at: {claims.expires_at}\n")
    return 0


def handle_chats(args: argparse.Namespace, output: TextIO) -> int:
    session = _open_session(args.config)

    async def _list(api: ApiClient) -> int:
        result = await ConversationDirectory(session, api).list_conversations()
        if result.status == STATUS_UNAUTHENTICATED:
            raise RuntimeError("Not logged in. Run login first.")
        if result.error is not None:
            raise RuntimeError(str(result.error))
        if not result.conversations:
            output.write("No conversations yet.\n")
        for preview in result.conversations:
            output.write(
                f"{preview.conversation_id}\t{preview.last_message_at.isoformat()}\t"
                f"{preview.counterpart_display_name}\t{preview.subject_offer_title}\t{preview.last_message_content}\n"
            )
        return 0

    return _run_with_api(args.config, _list, session)


def handle_show(args: argparse.Namespace, output: TextIO) -> int:
    session = _open_session(args.config)

    async def _show(api: ApiClient) -> int:
        controller = ChatViewController(session, api, request_timeout=args.config.request_timeout_s)
        try:
            view = await controller.select(args.conversation_id)
            _require_ready(view)
            for line in _format_view(view):
                output.write(line + "\n")
        finally:
            controller.dispose()
        return 0

    return _run_with_api(args.config, _show, session)


def handle_send(args: argparse.Namespace, output: TextIO) -> int:
    if not args.text.strip():
        raise RuntimeError("message is empty")
    session = _open_session(args.config)

    async def _send(api: ApiClient) -> int:
        controller = ChatViewController(session, api, request_timeout=args.config.request_timeout_s)
        try:
            _require_ready(await controller.select(args.conversation_id))
            channel = controller.channel
            assert channel is not None
            sent = await channel.send(args.text)
            if sent is None:
                raise RuntimeError(str(channel.send_error or "message was not sent"))
            output.write(f"sent {sent.message_id} at {sent.created_at.isoformat()}\n")
        finally:
            controller.dispose()
        return 0

    return _run_with_api(args.config, _send, session)


def handle_start(args: argparse.Namespace, output: TextIO) -> int:
    session = _open_session(args.config)

    async def _start(api: ApiClient) -> int:
        conversation_id = await start_conversation(session, api, args.offer_id, args.recipient_id)
        output.write(f"conversation_id: {conversation_id}\n")
        return 0

    return _run_with_api(args.config, _start, session)


HANDLERS = {
    "login": handle_login,
    "logout": handle_logout,
    "whoami": handle_whoami,
    "chats": handle_chats,
    "show": handle_show,
    "send": handle_send,
    "start": handle_start,
}


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose, args.quiet)
    stream = output or sys.stdout

    try:
        args.config = load_config(
            profile=args.profile,
            base_url=args.base_url,
            token_path=args.token_path,
            request_timeout_s=args.timeout,
        )
        return HANDLERS[args.command](args, stream)
    except (RuntimeError, ValueError, ChatClientError) as exc:  # user-facing errors
        logger.debug("command %s failed", args.command, exc_info=True)
        sys.stderr.write(f"Error: {exc}\n")
        return 1


if __name__ == "__main__":
    sys.exit(main())
