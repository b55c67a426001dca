# src/emitter_client/main.py
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import load_config
from .emitter import Emitter
from .exceptions import EmitterError

logger = logging.getLogger("emitter-client")


def setup_logging(log_path: Path, level_str: str) -> None:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    level = getattr(logging, level_str.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(log_path),
            logging.StreamHandler(sys.stdout),
        ],
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Command line client for an emitter.io server")
    parser.add_argument("--config", type=Path, help="Path to a YAML config file")
    parser.add_argument("--host", help="Emitter host (overrides config)")
    parser.add_argument("--port", type=int, help="Emitter MQTT port (overrides config)")
    parser.add_argument("--username", help="Username reported in presence events")

    sub = parser.add_subparsers(dest="command", required=True)

    keygen = sub.add_parser("keygen", help="Generate a channel key from a master key")
    keygen.add_argument("key")
    keygen.add_argument("channel")
    keygen.add_argument("--type", default="rw", help="Permissions, e.g. r, w, rw, rwp")
    keygen.add_argument("--ttl", type=int, default=0, help="Key lifetime in seconds (0 = forever)")

    publish = sub.add_parser("publish", help="Publish a message to a channel")
    publish.add_argument("key")
    publish.add_argument("channel")
    publish.add_argument("message")
    publish.add_argument("--ttl", type=int, help="Store the message for TTL seconds")
    publish.add_argument(
        "--no-me",
        action="store_true",
        help="Do not echo the message back to this client",
    )

    subscribe = sub.add_parser("subscribe", help="Print messages from a channel until interrupted")
    subscribe.add_argument("key")
    subscribe.add_argument("channel")
    subscribe.add_argument("--last", type=int, help="Replay the last N stored messages")

    presence = sub.add_parser("presence", help="Print presence events for a channel")
    presence.add_argument("key")
    presence.add_argument("channel")
    presence.add_argument("--status", action="store_true", help="Request the current occupancy")
    presence.add_argument("--changes", action="store_true", help="Follow subscribe/unsubscribe events")

    link = sub.add_parser("link", help="Create a named link to a channel")
    link.add_argument("key")
    link.add_argument("channel")
    link.add_argument("name")
    link.add_argument("--private", action="store_true")
    link.add_argument("--subscribe", action="store_true")
    link.add_argument("--ttl", type=int)
    link.add_argument("--no-me", action="store_true")

    return parser.parse_args(argv)


def _print_message(emitter: Emitter, topic: str, message: str) -> None:
    print(f"{topic}: {message}", flush=True)


def run(emitter: Emitter, args: argparse.Namespace) -> None:
    if args.command == "keygen":
        print(emitter.keygen(args.key, args.channel, args.type, args.ttl))
    elif args.command == "publish":
        me = False if args.no_me else None
        emitter.publish(args.key, args.channel, args.message, ttl=args.ttl, me=me)
        emitter.loop(True, True)
    elif args.command == "subscribe":
        emitter.add_message_handler(_print_message)
        emitter.subscribe(args.key, args.channel, last=args.last)
        emitter.loop(True)
    elif args.command == "presence":
        emitter.add_message_handler(_print_message)
        emitter.presence(args.key, args.channel, status=args.status, changes=args.changes)
        emitter.loop(True)
    elif args.command == "link":
        me = False if args.no_me else None
        emitter.link(
            args.key,
            args.channel,
            args.name,
            args.private,
            args.subscribe,
            ttl=args.ttl,
            me=me,
        )
        emitter.loop(True, True)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    cfg = load_config(args.config)
    setup_logging(cfg.logging.file, cfg.logging.level)

    emitter = Emitter(cfg.mqtt)
    try:
        emitter.connect(args.host, args.port, args.username)
        run(emitter, args)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except EmitterError as exc:
        logger.error("%s", exc)
        return 1
    finally:
        emitter.disconnect()

    return 0


if __name__ == "__main__":
    sys.exit(main())
