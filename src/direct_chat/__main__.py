"""Entrypoint: python -m direct_chat --user 3 --peer 5"""
from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import sys

from direct_chat.app import create_client
from direct_chat.application.exceptions import AuthError, BrokerConnectionError, ValidationError
from direct_chat.config import settings
from direct_chat.services.chat_session import ChatSession
from direct_chat.services.message_stream import MessageStream


class _Printer:
    """Prints each message of the displayed sequence once."""

    def __init__(self) -> None:
        self._conversation_id: int | None = None
        self._shown: set[int] = set()

    def __call__(self, stream: MessageStream) -> None:
        if stream.conversation_id != self._conversation_id:
            self._conversation_id = stream.conversation_id
            self._shown = set()
        for message in stream.messages:
            if message.id in self._shown:
                continue
            self._shown.add(message.id)
            print(f"[{message.local_time()}] {message.sender_name}: {message.content}")


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="direct_chat", description="Direct chat console client")
    parser.add_argument("--user", required=True, help="your numeric participant id")
    parser.add_argument("--peer", help="participant id to chat with")
    parser.add_argument("--password", help="prompted for when omitted")
    parser.add_argument("--register", action="store_true", help="create the account first")
    parser.add_argument("--display-name", help="display name used with --register")
    return parser.parse_args(argv)


async def run_console(args: argparse.Namespace) -> int:
    async with create_client(settings, on_change=_Printer()) as chat:
        try:
            if args.register:
                identity = await chat.register(args.user, args.password, args.display_name)
            else:
                identity = await chat.login(args.user, args.password)
        except (ValidationError, AuthError) as exc:
            print(f"Sign-in failed: {exc.detail}", file=sys.stderr)
            return 1
        print(f"Signed in as {identity.display_name} (ID #{identity.participant_id})")

        if args.peer:
            _select_peer(chat, args.peer)

        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line or line.strip() == "/quit":
                break
            text = line.rstrip("\n")
            if text.startswith("/peer"):
                _select_peer(chat, text.removeprefix("/peer"))
                continue
            try:
                chat.send_message(text)
            except ValidationError as exc:
                print(exc.detail, file=sys.stderr)
            except BrokerConnectionError as exc:
                print(f"Not sent ({chat.connection_state}): {exc.detail}", file=sys.stderr)
    return 0


def _select_peer(chat: ChatSession, raw: str) -> None:
    try:
        chat.select_peer(raw)
    except ValidationError as exc:
        print(exc.detail, file=sys.stderr)
        return
    if chat.conversation_id is not None:
        print(f"Conversation #{chat.conversation_id}")


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if args.password is None:
        args.password = getpass.getpass()
    sys.exit(asyncio.run(run_console(args)))


if __name__ == "__main__":
    main()
