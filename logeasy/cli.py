"""Replay recorded lifecycle events and captures, then print the session summary.

Each line of the input file is one JSON object: either a lifecycle event (has a
``phase``) or a capture message (has a ``timestamp`` and no ``phase``).

Usage:
    python -m logeasy.cli replay capture.jsonl --domain bank.example
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from logeasy.capture.models import CaptureMessage, LifecycleEvent
from logeasy.capture.storage import InMemoryKeyValueStore
from logeasy.config import get_settings
from logeasy.service import CaptureService

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s",
)

logger = logging.getLogger(__name__)


def replay_lines(service: CaptureService, lines: list[str]) -> int:
    """Feed JSONL lines into the service. Returns the number of lines applied."""
    applied = 0
    for lineno, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        try:
            raw = json.loads(line)
            if not isinstance(raw, dict):
                logger.warning("Skipping line %d: not a JSON object", lineno)
                continue
            if "phase" in raw:
                service.record_event(LifecycleEvent.model_validate(raw))
            else:
                service.ingest_capture(CaptureMessage.model_validate(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("Skipping line %d: %s", lineno, e)
            continue
        applied += 1
    return applied


async def _replay(path: Path, domain: str) -> int:
    service = CaptureService(InMemoryKeyValueStore(), get_settings())
    applied = replay_lines(service, path.read_text().splitlines())
    service.stop()

    summary = service.summarize(domain)
    if summary is None:
        print(f"Replayed {applied} lines; no active session for {domain}", file=sys.stderr)
        return 1
    print(json.dumps(summary.to_json_dict(), indent=2))
    return 0


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="logeasy", description="LogEasy capture core tools")
    subcommands = parser.add_subparsers(dest="command", required=True)

    replay = subcommands.add_parser("replay", help="Replay a JSONL capture file and print the session summary")
    replay.add_argument("file", type=Path, help="JSONL file of lifecycle events and capture messages")
    replay.add_argument("--domain", required=True, help="Domain to summarize, e.g. bank.example")

    args = parser.parse_args(argv)
    if not args.file.is_file():
        print(f"No such file: {args.file}", file=sys.stderr)
        sys.exit(2)

    sys.exit(asyncio.run(_replay(args.file, args.domain)))


if __name__ == "__main__":
    main()
