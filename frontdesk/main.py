"""CLI entry point for the Frontdesk assistant.

A terminal chat loop for development.  For production, use the FastAPI
server (``frontdesk/server.py``).

Usage:
    python -m frontdesk.main                 # normal mode (quiet)
    python -m frontdesk.main --debug         # debug mode (shows API calls)
    python -m frontdesk.main --user alice    # talk as a specific user id
"""

from __future__ import annotations

import argparse
import logging
import uuid

from dotenv import load_dotenv

from frontdesk.orchestrator import create_turn_orchestrator

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        # Silence chatty HTTP loggers even if root is WARNING
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("frontdesk").setLevel(logging.DEBUG if debug else logging.INFO)


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Frontdesk assistant CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    parser.add_argument("--user", help="User id to chat as (default: a fresh random id)")
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    print("\n" + "=" * 60)
    print("  Frontdesk Assistant - CLI Chat")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' for a new conversation.")
    print("=" * 60 + "\n")

    orchestrator = create_turn_orchestrator()
    user_id = args.user or f"cli-{uuid.uuid4().hex[:8]}"
    logger.info("Chatting as user %s", user_id)

    while True:
        try:
            user_input = input("You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if not user_input:
            continue

        if user_input.lower() in ("exit", "quit", "q"):
            print("\nGoodbye!")
            break

        if user_input.lower() == "new":
            user_id = f"cli-{uuid.uuid4().hex[:8]}"
            print(f"\n>> New conversation as {user_id}\n")
            continue

        try:
            reply = orchestrator.handle_turn(user_id, user_input)
        except KeyboardInterrupt:
            print("\n\nGoodbye!")
            break
        print(f"\nAssistant: {reply}\n")


if __name__ == "__main__":
    main()
