#!/usr/bin/env python3
"""
Camp QR Tools
Exports camper QR cards to PDF, emails each camper their card, and saves
individual QR codes, for registrations from a CSV/Excel file or the camp API.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import List, Optional

from dotenv import find_dotenv, load_dotenv

from cards import CardRenderer
from config import Settings, load_settings
from data_loaders import fetch_camp_registrations, load_registrations, select_registrations
from errors import QrToolsError
from mailer import build_mail_transport
from models import ProgressState, Registration
from pdf_export import PdfDocumentAssembler
from qr_codes import QrTokenEncoder
from qr_tools import QrTools


def build_qr_tools(settings: Settings, transport=None) -> QrTools:
    """Wire the real encoder, renderer, assembler and mail transport together."""
    encoder = QrTokenEncoder()
    return QrTools(
        encoder=encoder,
        renderer=CardRenderer(encoder),
        assembler=PdfDocumentAssembler(settings.output_dir, encoder),
        transport=transport if transport is not None else _LazyTransport(settings),
        concurrency=settings.distribution_concurrency,
    )


class _LazyTransport:
    """Builds the configured mail transport on first send; pdf and qr never need one."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._transport = None

    def send(self, message):
        if self._transport is None:
            self._transport = build_mail_transport(self.settings)
        return self._transport.send(message)


def read_registrations(args: argparse.Namespace, settings: Settings) -> List[Registration]:
    if args.data:
        registrations = load_registrations(args.data, sheet=args.sheet)
    else:
        registrations = fetch_camp_registrations(
            settings.api_base_url,
            args.camp_id,
            token=settings.api_token,
            church_id=args.church_id,
            category_id=args.category_id,
        )
    ids = [i.strip() for i in (args.ids or "").split(",") if i.strip()]
    return select_registrations(registrations, ids)


def _print_progress(state: ProgressState) -> None:
    if state.active:
        print(f"  {state.message}", flush=True)


async def run_command(args: argparse.Namespace, settings: Settings, tools: QrTools) -> int:
    registrations = read_registrations(args, settings)
    print(f"Found {len(registrations)} registration(s)")

    if args.command == "pdf":
        unsubscribe = tools.progress.subscribe(_print_progress)
        try:
            path = await tools.export_pdf(registrations)
        finally:
            unsubscribe()
        print(f"\nCompleted! Saved '{path}'")
        return 0

    if args.command == "send":
        result = await tools.send_emails(registrations)
        print(f"\nEmails sent: {result.success}, failed: {result.failed}")
        for err in result.errors:
            print(f"  ✗ {err}")
        return 0 if result.failed == 0 else 2

    if args.command == "qr":
        for i, reg in enumerate(registrations, 1):
            path = await tools.save_token(reg, settings.output_dir)
            print(f"Saved QR code {i}/{len(registrations)}: {reg.display_name or reg.code} -> {path}")
        return 0

    raise ValueError(f"Unknown command: {args.command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Generate, export and email camper QR cards")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--data", help="Path to Excel (.xlsx) or CSV with registrations")
    source.add_argument("--camp-id", help="Load registrations of this camp from the API")
    parser.add_argument("--sheet", default="Sheet1", help="Excel sheet name (default: Sheet1)")
    parser.add_argument("--church-id", help="API filter: only this church")
    parser.add_argument("--category-id", help="API filter: only this category")
    parser.add_argument("--ids", help="Comma-separated registration ids or camper codes to select (default: all)")
    parser.add_argument("--api-base-url", help="Camp API base URL (default: $API_BASE_URL or http://localhost:5000)")
    parser.add_argument("-o", "--output", help="Output directory (default: $OUTPUT_DIR or output)")

    sub = parser.add_subparsers(dest="command", required=True)
    pdf = sub.add_parser("pdf", help="Export selected registrations' QR cards to one PDF")
    send = sub.add_parser("send", help="Email each selected registration its QR card")
    send.add_argument("--backend", choices=["api", "smtp2go"], help="Mail backend (default: $MAIL_BACKEND or api)")
    qr = sub.add_parser("qr", help="Save each selected registration's QR code as a PNG")
    for p in (pdf, qr):
        # SUPPRESS keeps a top-level -o when the subcommand does not repeat it
        p.add_argument("-o", "--output", default=argparse.SUPPRESS, help="Output directory")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    load_dotenv(find_dotenv(usecwd=True), override=False)

    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(
            api_base_url=args.api_base_url,
            mail_backend=getattr(args, "backend", None),
            output_dir=args.output,
        )
        # Bad mail configuration fails here, before any card is rendered
        transport = build_mail_transport(settings) if args.command == "send" else None
        tools = build_qr_tools(settings, transport=transport)
        return asyncio.run(run_command(args, settings, tools))
    except KeyboardInterrupt:
        print("Interrupted.")
        return 130
    except (QrToolsError, ValueError, OSError) as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
