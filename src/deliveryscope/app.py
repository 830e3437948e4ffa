"""Application entry point for the deliveryscope verifier."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv

from deliveryscope.core.config import CONSUMPTION_MODES, ConfigurationError, MatchingConfig
from deliveryscope.core.models import internal_record_from_row, parse_timestamp
from deliveryscope.core.service import ROLE_FILTERS, VerificationRequest, VerificationService

NAME = "DELIVERYSCOPE"
FONT = "tarty-1"

# Environment values never written to logs verbatim.
_REDACTED_ENV = ("API_ID", "API_HASH", "PHONE", "TWO_FA_PASSWORD")


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = sorted({secret for secret in secrets if secret}, key=len, reverse=True)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _configure_logging(config: dict, project_root: str) -> None:
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = [os.getenv(name, "") for name in _REDACTED_ENV]
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/deliveryscope.log")
        if not os.path.isabs(path):
            path = os.path.join(project_root, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        file_handler = RotatingFileHandler(
            path,
            maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
            backupCount=int(file_cfg.get("backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _timestamp_arg(value: str) -> datetime:
    try:
        return parse_timestamp(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(
            f"Invalid date {value!r}; use ISO 8601, e.g. 2024-01-31T00:00:00Z"
        ) from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="deliveryscope")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_window(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--from", dest="window_start", type=_timestamp_arg, required=True)
        sub.add_argument("--to", dest="window_end", type=_timestamp_arg, required=True)

    def add_run_options(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--threshold", type=float, help="Similarity threshold in (0, 1]")
        sub.add_argument("--batch-size", type=int, help="Internal records per batch")
        sub.add_argument("--consumption", choices=CONSUMPTION_MODES, help="External record consumption scope")
        sub.add_argument("--external-file", help="Read provider history from a JSON export instead of Telegram")
        sub.add_argument("--output", help="Write the full JSON report to this path")

    verify = subparsers.add_parser("verify", help="Verify delivery of logged messages")
    add_window(verify)
    verify.add_argument("--phone", action="append", default=[], help="Phone number to verify (repeatable)")
    verify.add_argument("--range", nargs=2, metavar=("START", "END"), help="Inclusive phone number range")
    verify.add_argument("--role", choices=sorted(ROLE_FILTERS), default="both")
    verify.add_argument("--no-details", action="store_true", help="Only emit the summary block")
    add_run_options(verify)

    first_contact = subparsers.add_parser("first-contact", help="Verify first messages of each conversation")
    add_window(first_contact)
    add_run_options(first_contact)

    importer = subparsers.add_parser("import", help="Load internal messages from a JSON export")
    importer.add_argument("path")

    subparsers.add_parser("login", help="Authorize the Telegram provider account")
    return parser


def _matching_config(args: argparse.Namespace, base: MatchingConfig) -> MatchingConfig:
    config = MatchingConfig(
        threshold=args.threshold if args.threshold is not None else base.threshold,
        batch_size=args.batch_size if args.batch_size is not None else base.batch_size,
        consumption_mode=args.consumption or base.consumption_mode,
        workers=base.workers,
    )
    config.validate()
    return config


async def _dispatch(service: VerificationService, args: argparse.Namespace):
    if args.command == "first-contact":
        return await service.verify_first_contact(args.window_start, args.window_end)
    if len(args.phone) == 1 and not args.range:
        return await service.verify_single(
            args.phone[0],
            args.window_start,
            args.window_end,
            include_details=not args.no_details,
            role_filter=args.role,
        )
    request = VerificationRequest(
        window_start=args.window_start,
        window_end=args.window_end,
        phone_numbers=tuple(args.phone),
        phone_number_range=tuple(args.range) if args.range else None,
        role_filter=args.role,
        include_details=not args.no_details,
    )
    return await service.verify(request)


def _run_verification(args: argparse.Namespace) -> None:
    from deliveryscope import settings
    from deliveryscope.adapters.report_formatting import render_report, write_report
    from deliveryscope.adapters.sqlite_storage import SQLiteMessageStore

    logger = logging.getLogger(__name__)
    matching = _matching_config(args, settings.MATCHING)
    storage = SQLiteMessageStore(settings.DB_PATH)
    storage.init_db()

    if args.external_file:
        from deliveryscope.adapters.json_source import JsonExportSource

        service = VerificationService(storage, JsonExportSource(args.external_file), matching)
        outcome = asyncio.run(_dispatch(service, args))
    else:
        from deliveryscope.adapters.telegram_source import TelegramExternalSource
        from deliveryscope.adapters.ttl_cache import TTLCache
        from deliveryscope.client import build_client
        from deliveryscope.get_session import authorize

        client = build_client()
        source = TelegramExternalSource(client, TTLCache(), settings.CACHE_TTL_SECONDS)
        service = VerificationService(storage, source, matching)

        async def _with_client():
            await client.connect()
            try:
                await authorize(client, interactive=False)
                return await _dispatch(service, args)
            finally:
                await client.disconnect()

        # Telethon binds the client to its own loop at construction time.
        outcome = client.loop.run_until_complete(_with_client())

    render_report(outcome.report, outcome.errors)
    if args.output:
        write_report(outcome.report, outcome.errors, args.output)
        logger.info("Report written to %s", args.output)


def _import(path: str) -> None:
    from deliveryscope import settings
    from deliveryscope.adapters.sqlite_storage import SQLiteMessageStore

    with open(path, "r", encoding="utf-8") as handle:
        rows = json.load(handle)
    records = [internal_record_from_row(row) for row in rows]

    storage = SQLiteMessageStore(settings.DB_PATH)
    storage.init_db()
    written = storage.add_messages(records)
    logging.getLogger(__name__).info("Imported %s internal messages into %s", written, settings.DB_PATH)


def _login() -> None:
    from deliveryscope.client import build_client
    from deliveryscope.get_session import authorize

    client = build_client()

    async def _run_login() -> None:
        await client.connect()
        try:
            await authorize(client)
        finally:
            await client.disconnect()

    client.loop.run_until_complete(_run_login())


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    _print_banner()
    from deliveryscope import settings

    _configure_logging(settings.LOGGING or {}, settings.PROJECT_ROOT)

    try:
        if args.command == "import":
            _import(args.path)
        elif args.command == "login":
            _login()
        else:
            _run_verification(args)
    except ConfigurationError as exc:
        parser.error(str(exc))


if __name__ == "__main__":
    main()
