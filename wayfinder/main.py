"""Command-line entry point: ask questions and manage stored memory."""

import argparse
import asyncio
import json
import logging
import sys

from wayfinder.app import WayfinderApp
from wayfinder.config import settings
from wayfinder.errors import WayfinderError

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wayfinder", description="Ask travel questions and manage conversation memory"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    ask = sub.add_parser("ask", help="Answer a query")
    ask.add_argument("query", help="Free-text question")
    ask.add_argument("--user-id", help="Existing user id (a new user is created if omitted)")
    ask.add_argument("--session-id", help="Session id (defaults to the user's current session)")

    history = sub.add_parser("history", help="List a user's past conversations")
    history.add_argument("user_id")
    history.add_argument("--limit", "-n", type=int, default=settings.history_limit)
    history.add_argument("--offset", type=int, default=0)

    stats = sub.add_parser("stats", help="Show memory statistics for a user")
    stats.add_argument("user_id")

    export = sub.add_parser("export", help="Export everything stored for a user")
    export.add_argument("user_id")

    forget = sub.add_parser("forget", help="Delete everything stored for a user")
    forget.add_argument("user_id")

    sub.add_parser("responders", help="List registered responders")

    update = sub.add_parser("update-responder", help="Change a responder at runtime")
    update.add_argument("responder_id")
    toggle = update.add_mutually_exclusive_group()
    toggle.add_argument("--enable", dest="enabled", action="store_const", const=True)
    toggle.add_argument("--disable", dest="enabled", action="store_const", const=False)
    update.add_argument("--priority", type=int)
    update.add_argument("--keywords", help="Comma-separated keywords")
    update.add_argument("--system-prompt")

    remove = sub.add_parser("remove-responder", help="Remove a responder")
    remove.add_argument("responder_id")
    return parser


async def run(args: argparse.Namespace, app: WayfinderApp) -> object:
    """Execute one CLI command and return a JSON-serialisable payload."""
    match args.command:
        case "ask":
            result = await app.ask(args.query, user_id=args.user_id, session_id=args.session_id)
            return result.model_dump(mode="json")
        case "history":
            results = await app.memory.get_conversation_history(
                args.user_id, args.limit, args.offset
            )
            return [r.model_dump(mode="json") for r in results]
        case "stats":
            return (await app.memory.stats(args.user_id)).model_dump(mode="json")
        case "export":
            return (await app.users.export_user(args.user_id)).model_dump(mode="json")
        case "forget":
            return await app.users.delete_user(args.user_id)
        case "responders":
            return app.registry.stats()
        case "update-responder":
            changes = {
                key: value
                for key, value in (
                    ("enabled", args.enabled),
                    ("priority", args.priority),
                    ("system_prompt", args.system_prompt),
                )
                if value is not None
            }
            if args.keywords is not None:
                changes["keywords"] = args.keywords.split(",")
            responder = await app.update_responder(args.responder_id, **changes)
            return responder.descriptor.model_dump(mode="json")
        case "remove-responder":
            return {"removed": await app.remove_responder(args.responder_id)}
    msg = f"Unknown command: {args.command}"
    raise ValueError(msg)


async def _main(args: argparse.Namespace) -> object:
    async with WayfinderApp.create() as app:
        return await run(args, app)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        payload = asyncio.run(_main(args))
    except WayfinderError as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(json.dumps({"error": type(exc).__name__, "message": str(exc)}), file=sys.stderr)
        return 1
    print(json.dumps(payload, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
