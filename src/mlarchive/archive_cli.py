from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path

from mlarchive.config import get_settings
from mlarchive.handlers.archive_handler import handle_parse_archive
from mlarchive.services.archive_client import ArchiveClient
from mlarchive.services.logging_config import configure_logging
from mlarchive.services.mbox_codec import CodecError
from mlarchive.services.message_parser import MalformedMessageError

logger = logging.getLogger(__name__)


async def _load(path: str | None, url: str | None) -> str:
    settings = get_settings()
    if path:
        with Path(path).open(encoding="utf-8", newline="") as handle:
            return handle.read()

    client = ArchiveClient(
        retry_max_attempts=settings.api_retry_max_attempts,
        retry_base_delay_seconds=settings.api_retry_base_delay_seconds,
        retry_max_delay_seconds=settings.api_retry_max_delay_seconds,
    )
    return await client.fetch_archive(url or settings.archive_url)


def _run(path: str | None, url: str | None, resolve_out_of_order: bool) -> tuple[int, dict]:
    text = asyncio.run(_load(path, url))
    try:
        payload = handle_parse_archive(text, resolve_out_of_order=resolve_out_of_order)
    except (MalformedMessageError, CodecError) as exc:
        logger.error("Archive could not be parsed", extra={"event": "archive_parse_failed", "error": repr(exc)})
        return 2, {"error": str(exc)}
    return 0, payload


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Rebuild the conversations of an mbox mailing-list archive.")
    parser.add_argument("path", nargs="?", help="Local mbox file. Defaults to fetching --url.")
    parser.add_argument("--url", default="", help="Remote mbox archive URL (defaults to ARCHIVE_URL).")
    parser.add_argument(
        "--resolve-out-of-order",
        action="store_true",
        help="Attach replies that appear before their parent in the archive.",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.log_level, json_format=settings.log_json)

    if not args.path and not (args.url or settings.archive_url):
        parser.error("either a path or --url is required")

    resolve = args.resolve_out_of_order or settings.resolve_out_of_order
    code, payload = _run(args.path, args.url or None, resolve)
    print(json.dumps(payload, indent=2, sort_keys=True))
    return code


if __name__ == "__main__":
    raise SystemExit(main())
