#!/usr/bin/env python3
"""
Interactive Chat — Talk to the guideline engine from a terminal.

Usage:
    python scripts/chat_cli.py

    # Resume an existing chat (file backend):
    python scripts/chat_cli.py --chat-id <id>

    # Show matched guidelines and facts after every turn:
    python scripts/chat_cli.py --debug
"""
import asyncio
import json
import os
import sys
import argparse

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()


async def run_chat(chat_id: str = None, debug: bool = False):
    from config.settings import load_settings
    settings = load_settings()

    from core.orchestrator import create_orchestrator
    from database.store_base import UnknownChatError
    orchestrator = await create_orchestrator(settings)

    if settings.database.store_backend == "memory":
        from rules.embeddings import calculate_embeddings
        try:
            await calculate_embeddings(orchestrator.matcher.store, orchestrator.llm)
        except Exception as e:
            print(f"Embeddings unavailable, fuzzy guidelines disabled: {e}")

    print(f"{settings.app_name} — type 'exit' to quit.")
    try:
        while True:
            try:
                message = input("you> ").strip()
            except EOFError:
                break
            if not message:
                continue
            if message.lower() in ("exit", "quit"):
                break

            try:
                result = await orchestrator.handle_turn(message, chat_id)
            except UnknownChatError as e:
                print(f"Unknown chat: {e}")
                chat_id = None
                continue
            chat_id = result.chat_id
            print(f"bot> {result.reply}")

            if debug:
                print(json.dumps({
                    "chat_id": chat_id,
                    "guidelines": [g["id"] for g in result.active_guidelines],
                    "plan": result.plan.model_dump(by_alias=True),
                    "facts": result.facts.model_dump(by_alias=True),
                }, indent=2, default=str))
    finally:
        await orchestrator.llm.close()


def main():
    parser = argparse.ArgumentParser(description="Interactive guideline engine chat")
    parser.add_argument("--chat-id", help="Existing chat id to resume")
    parser.add_argument("--debug", action="store_true", help="Print plan and facts per turn")
    args = parser.parse_args()

    asyncio.run(run_chat(chat_id=args.chat_id, debug=args.debug))


if __name__ == "__main__":
    main()
