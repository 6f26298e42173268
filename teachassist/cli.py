"""
Teaching Assistant CLI.

Commands:
    teachassist validate                 Check an OpenAI API key
    teachassist chat "What is a loop?"   Ask the assistant and stream the answer
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Optional

from .config import AssistantSettings
from .exceptions import ConfigError, TeachAssistError
from .models import Message

API_KEY_ENV = "OPENAI_API_KEY"


def _load_settings(args: argparse.Namespace) -> AssistantSettings:
    try:
        if args.config:
            return AssistantSettings.from_yaml(args.config)
        return AssistantSettings.from_env()
    except ConfigError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        sys.exit(1)


def _require_api_key(args: argparse.Namespace) -> str:
    api_key: Optional[str] = args.api_key or os.environ.get(API_KEY_ENV)
    if not api_key:
        print(
            f"Error: no API key given. Use --api-key or set {API_KEY_ENV}.",
            file=sys.stderr,
        )
        sys.exit(1)
    return api_key


def cmd_validate(args: argparse.Namespace) -> None:
    """Validate an API key against the model provider."""
    from .provider import TeachingAssistantProvider

    settings = _load_settings(args)
    api_key = _require_api_key(args)
    provider = TeachingAssistantProvider(settings)

    result = asyncio.run(provider.validate_credential(api_key))
    print(json.dumps(result.to_dict()))
    if not result.success:
        sys.exit(1)


def _delta_content(line: str) -> str:
    """Extract the delta text from one ``data: {...}`` line; empty for [DONE]."""
    payload = line.strip()
    if not payload.startswith("data: "):
        return ""
    payload = payload[len("data: ") :]
    if payload == "[DONE]":
        return ""
    return json.loads(payload)["choices"][0]["delta"]["content"]


async def _chat(args: argparse.Namespace, settings: AssistantSettings, api_key: str) -> None:
    from .provider import SessionConfig, TeachingAssistantProvider

    provider = TeachingAssistantProvider(settings)
    session = provider.create_streaming_session(
        SessionConfig(
            credential=api_key,
            resource_id=args.resource_id,
            thread_id=args.thread_id,
            max_steps=args.max_steps,
        )
    )
    try:
        response = await session.stream_chat([Message.user(args.message, args.image or ())])
        async with response.body as stream:
            async for line in stream:
                text = line.decode("utf-8")
                if args.raw:
                    sys.stdout.write(text)
                else:
                    sys.stdout.write(_delta_content(text))
                sys.stdout.flush()
        if not args.raw:
            sys.stdout.write("\n")
    finally:
        await provider.shutdown()


def cmd_chat(args: argparse.Namespace) -> None:
    """Send one message to the assistant and print the streamed reply."""
    settings = _load_settings(args)
    if args.no_delay:
        settings.chunk_delay = 0.0
    api_key = _require_api_key(args)

    try:
        asyncio.run(_chat(args, settings, api_key))
    except TeachAssistError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="teachassist",
        description="Teaching Assistant CLI - Validate keys and chat with the assistant",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 0.1.0",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    parser.add_argument(
        "--config",
        "-c",
        help="Path to a settings YAML file (default: read TEACHASSIST_* env vars)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Validate command
    validate_parser = subparsers.add_parser("validate", help="Validate an API key")
    validate_parser.add_argument(
        "--api-key",
        "-k",
        help=f"API key to check (default: ${API_KEY_ENV})",
    )
    validate_parser.set_defaults(func=cmd_validate)

    # Chat command
    chat_parser = subparsers.add_parser("chat", help="Ask the assistant a question")
    chat_parser.add_argument("message", help="Message to send")
    chat_parser.add_argument(
        "--api-key",
        "-k",
        help=f"API key to use (default: ${API_KEY_ENV})",
    )
    chat_parser.add_argument(
        "--resource-id",
        "-r",
        help="Student identifier that scopes long-term memory",
    )
    chat_parser.add_argument(
        "--thread-id",
        "-t",
        help="Conversation thread identifier",
    )
    chat_parser.add_argument(
        "--image",
        action="append",
        metavar="URL",
        help="Screenshot URL or data URL to attach (repeatable)",
    )
    chat_parser.add_argument(
        "--max-steps",
        type=int,
        help="Maximum model/tool steps for this reply",
    )
    chat_parser.add_argument(
        "--no-delay",
        action="store_true",
        help="Print chunks without pacing",
    )
    chat_parser.add_argument(
        "--raw",
        action="store_true",
        help="Print the raw server-sent-event lines",
    )
    chat_parser.set_defaults(func=cmd_chat)

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    args.func(args)


if __name__ == "__main__":
    main()
