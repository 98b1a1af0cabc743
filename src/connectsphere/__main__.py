"""CLI entry point for connectsphere."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from connectsphere.app import ConnectSphereApp
from connectsphere.config import AppConfig, load_config
from connectsphere.log import setup_logging


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="connectsphere",
        description="Multi-tenant WhatsApp assistant with bookings and a knowledge base",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (
        ("start", "Start the service"),
        ("config-check", "Validate configuration"),
        ("cleanup", "Run one conversation retention sweep and exit"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
        sub.add_argument("-e", "--env", default=".env", help="Path to .env file")

    args = parser.parse_args()

    if args.command is None:
        # Default to start
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "cleanup":
        _cleanup(args.config, args.env)
    elif args.command == "start":
        _run(args.config, args.env)


def _load(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Run 'python install.py' first or copy config.example.yaml to config.yaml")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load(config_path, env_path)
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Storage: {config.storage.db_path}")
    if config.anthropic:
        print(f"  AI: anthropic [{config.assistant.model}, max_tokens={config.assistant.max_tokens}]")
    else:
        print("  AI: not configured (offline replies only)")
    print(f"  Embeddings: {config.embedding.model if config.embedding.api_key else 'not configured'}")
    print(f"  Booking timezone: {config.booking.timezone} (lead {config.booking.min_lead_minutes} min)")
    print(
        f"  Conversations: keep {config.conversation.max_messages} messages, "
        f"{config.conversation.retention_days} day retention"
    )


def _cleanup(config_path: str, env_path: str) -> None:
    config = _load(config_path, env_path)
    setup_logging(config.log_level, config.log_json)

    async def _async_cleanup() -> dict[str, int]:
        app = ConnectSphereApp(config)
        await app.store.initialize()
        try:
            return await app.run_retention_cleanup()
        finally:
            await app.store.close()

    result = asyncio.run(_async_cleanup())
    print(f"Tenants processed: {result['tenants_processed']}, messages deleted: {result['messages_deleted']}")


def _run(config_path: str, env_path: str) -> None:
    """Load config and start the application."""
    config = _load(config_path, env_path)
    setup_logging(config.log_level, config.log_json)

    async def _async_main() -> None:
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        def _signal_handler() -> None:
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _signal_handler)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: _signal_handler())

        app = ConnectSphereApp(config)
        await app.start()
        try:
            await stop_event.wait()
        finally:
            await app.stop()

    asyncio.run(_async_main())


if __name__ == "__main__":
    main()
