#!/usr/bin/env python3
"""
Two-turn conversation with the Teaching Assistant, streamed to the terminal.

The assistant remembers the student across turns (and across runs) through
its memory database, and looks up courses with the course MCP server when
Node.js is available.

Prerequisites:
    pip install -e .
    # optional, for course tools: Node.js (provides npx)

Usage:
    export OPENAI_API_KEY=sk-...
    python examples/teaching_assistant_chat.py
"""

import asyncio
import json
import os
import sys

from teachassist import AssistantSettings, SessionConfig, TeachingAssistantProvider
from teachassist.models import DONE_LINE

STUDENT_ID = "example-student"
THREAD_ID = "example-lesson"


async def ask(provider: TeachingAssistantProvider, api_key: str, conversation: list) -> str:
    session = provider.create_streaming_session(
        SessionConfig(credential=api_key, resource_id=STUDENT_ID, thread_id=THREAD_ID)
    )
    response = await session.stream_chat(conversation)

    reply = []
    async with response.body as stream:
        async for line in stream:
            text = line.decode("utf-8")
            if text == DONE_LINE:
                break
            content = json.loads(text[len("data: ") :])["choices"][0]["delta"]["content"]
            reply.append(content)
            print(content, end="", flush=True)
    print()
    return "".join(reply)


async def main() -> None:
    api_key = os.environ.get("OPENAI_API_KEY", "")
    provider = TeachingAssistantProvider(AssistantSettings.from_env())

    check = await provider.validate_credential(api_key)
    if not check.success:
        print(f"API key rejected: {check.error}", file=sys.stderr)
        sys.exit(1)

    conversation = [
        {"role": "user", "content": "Hi! I'm Sam and I'm learning Python. What is a list comprehension?"}
    ]
    try:
        print("Student: " + conversation[0]["content"])
        print("Assistant: ", end="")
        answer = await ask(provider, api_key, conversation)

        conversation.append({"role": "assistant", "content": answer})
        conversation.append({"role": "user", "content": "Are there any courses that cover this?"})
        print("\nStudent: " + conversation[-1]["content"])
        print("Assistant: ", end="")
        await ask(provider, api_key, conversation)
    finally:
        await provider.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
