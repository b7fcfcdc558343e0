"""
chatrelay CLI entry point.

Provides command-line interface for serving the API and utility commands.
"""

import argparse
import asyncio
import sys
import time
from pathlib import Path

from chatrelay import __version__
from chatrelay.components import ChatComponents
from chatrelay.config.logging import get_logger, setup_logging
from chatrelay.config.settings import Settings, load_settings
from chatrelay.errors import ChatRelayError
from chatrelay.llm.models import Role, Turn
from chatrelay.service import ChatRequest, ChatTask

_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


def create_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(
        prog="chatrelay",
        description="Relay chat turns to Gemini or Perplexity with image and weather tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"chatrelay {__version__}",
    )

    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: .env in current directory)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level from config",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser(
        "config",
        help="Show current configuration",
    )

    chat_parser = subparsers.add_parser(
        "chat",
        help="Send one message and print the reply (no anti-abuse gate)",
    )
    chat_parser.add_argument(
        "message",
        help='Message to send, e.g. "draw a cat wearing a hat"',
    )
    chat_parser.add_argument(
        "--model",
        default=None,
        help="Provider family or model id, e.g. gemini, perplexity, sonar-pro "
             "(default: ORCHESTRATOR_DEFAULT_MODEL)",
    )
    chat_parser.add_argument(
        "--title",
        action="store_true",
        help="Also generate a conversation title",
    )
    chat_parser.add_argument(
        "--media-dir",
        type=Path,
        default=Path("."),
        help="Directory generated images are written to (default: current directory)",
    )

    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the HTTP API",
    )
    serve_parser.add_argument("--host", default=None, help="Bind address (default: SERVER_HOST)")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port (default: SERVER_PORT)")

    return parser


def _mask(secret: str) -> str:
    return "Set" if secret else "Not set"


def cmd_config(settings: Settings) -> int:
    """Show current configuration."""
    logger = get_logger(__name__)

    logger.info("\n=== chatrelay Configuration ===\n")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Log Level: {settings.log_level}")
    logger.info(f"Log File: {settings.log_file or 'None (console only)'}")
    logger.info(f"\nGemini Model: {settings.gemini.model}")
    logger.info(f"Gemini Image Model: {settings.gemini.image_model}")
    logger.info(f"Gemini API Key: {_mask(settings.gemini.api_key)}")
    logger.info(f"\nPerplexity Model: {settings.perplexity.model}")
    logger.info(f"Perplexity API Key: {_mask(settings.perplexity.api_key)}")
    logger.info(f"\nWeather API Key: {_mask(settings.weather.api_key)}")
    logger.info(f"Weather Units: {settings.weather.units}")
    logger.info(f"\nAnti-Abuse Secret: {_mask(settings.anti_abuse.secret_key)}")
    logger.info(f"Anti-Abuse Required: {settings.anti_abuse.required}")
    logger.info(f"Anti-Abuse Threshold: {settings.anti_abuse.score_threshold}")
    logger.info(f"\nDefault Model: {settings.orchestrator.default_model}")
    logger.info(f"Provider Timeout: {settings.orchestrator.provider_timeout}s")
    logger.info(f"Tool Timeout: {settings.orchestrator.tool_timeout}s")
    logger.info(f"Max Tool Rounds: {settings.orchestrator.max_tool_rounds}")
    logger.info(f"\nServer: {settings.server.host}:{settings.server.port}")

    return 0


async def cmd_chat(args, settings: Settings) -> int:
    """
    Run one orchestration for a single user message and print the result.

    Generated images are written to --media-dir.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    logger = get_logger(__name__)

    message = args.message.strip()
    if not message:
        logger.error("Message cannot be empty")
        return 1

    service = ChatComponents(settings).create_service()
    request = ChatRequest(
        history=[Turn.user(message)],
        model=args.model,
        task=ChatTask.CHAT_WITH_TITLE if args.title else ChatTask.CHAT,
    )

    start_time = time.time()
    try:
        response = await service.handle(request, verify=False)
    except ChatRelayError as e:
        logger.error(f"[{e.category}] {e.message}")
        return 1

    elapsed = time.time() - start_time

    if response.title:
        print(f"\n=== {response.title} ===")

    for turn in response.turns:
        for part in turn.parts:
            if part.text is not None and turn.role is Role.MODEL:
                print(f"\n{part.text}")
            elif part.function_call is not None:
                print(f"\n[{turn.role}] → {part.function_call.name}({part.function_call.arguments})")
            elif part.function_result is not None:
                print(f"[{turn.role}] ← {part.function_result.name}: "
                      f"{part.function_result.response.get('summary', '')}")

    final = response.turns[-1]
    if final.media:
        args.media_dir.mkdir(parents=True, exist_ok=True)
    for index, media in enumerate(final.media, start=1):
        suffix = _EXTENSIONS.get(media.mime_type, ".bin")
        path = args.media_dir / f"chatrelay_{int(start_time)}_{index}{suffix}"
        path.write_bytes(media.to_bytes())
        print(f"\nSaved {media.mime_type} to {path}")

    print(f"\nProvider: {response.provider} ({response.model})  |  {elapsed:.1f}s")
    return 0


def cmd_serve(args, settings: Settings) -> int:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from chatrelay.api import create_app

    logger = get_logger(__name__)

    host = args.host or settings.server.host
    port = args.port or settings.server.port

    if not settings.anti_abuse.secret_key and settings.anti_abuse.required:
        logger.warning(
            "ANTI_ABUSE_SECRET_KEY not set. Every /api/chat request will be rejected "
            "until it is configured (or ANTI_ABUSE_REQUIRED=false for local development)."
        )

    app = create_app(settings)
    logger.info(f"Serving chatrelay on http://{host}:{port}")
    # log_config=None keeps uvicorn from replacing our logging setup
    uvicorn.run(app, host=host, port=port, log_config=None)
    return 0


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    # Load settings
    try:
        settings = load_settings(env_file=args.env_file)
    except Exception as e:
        print(f"Error loading settings: {e}", file=sys.stderr)
        return 1

    # Override log level if specified
    if args.log_level:
        settings.log_level = args.log_level

    setup_logging(settings)

    if args.command == "config":
        return cmd_config(settings)
    elif args.command == "chat":
        return asyncio.run(cmd_chat(args, settings))
    elif args.command == "serve":
        return cmd_serve(args, settings)
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
