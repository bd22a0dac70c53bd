"""CLI entry point for the Newsletter Ingestor."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from newsletter_ingestor.config.settings import NewsletterIngestorSettings
from newsletter_ingestor.core.link_codec import LinkCodec
from newsletter_ingestor.core.models import RunProgress
from newsletter_ingestor.core.normalizer import TextNormalizer
from newsletter_ingestor.pipeline.orchestrator import NewsletterPipeline


def setup_logging(level: str) -> None:
    """Configure logging with timestamp and module info."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def on_progress(progress: RunProgress) -> None:
    """Print progress updates to stdout."""
    print(
        f"[{progress.current_stage}] "
        f"found={progress.messages_found} "
        f"processed={progress.messages_processed} "
        f"skipped={progress.messages_skipped} "
        f"news={progress.news_items_stored} "
        f"failed={progress.extraction_failures + progress.storage_failures}",
        end="\r",
        flush=True,
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        description="Newsletter Ingestor - Extract news items from newsletter emails"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Process new newsletters into the spreadsheet")
    run_parser.add_argument("--label", "-l", help="Gmail label (default: from settings)")
    run_parser.add_argument(
        "--limit", type=int, default=None, help="Cap messages processed in this run"
    )

    subparsers.add_parser("watermark", help="Show the latest recorded email timestamp")
    subparsers.add_parser("status", help="Show ledger counts by status")

    normalize_parser = subparsers.add_parser(
        "normalize", help="Print the normalized markdown of a local HTML file"
    )
    normalize_parser.add_argument("file", type=Path, help="HTML file to normalize")
    normalize_parser.add_argument(
        "--shorten", action="store_true", help="Also replace links with short tokens"
    )

    return parser


def _normalize_file(path: Path, shorten: bool, prefix: str) -> None:
    """Offline preview of what the model will see for a given HTML body."""
    markdown = TextNormalizer().normalize(path.read_text(encoding="utf-8", errors="replace"))
    if not shorten:
        print(markdown)
        return
    shortened, link_map = LinkCodec(prefix).shorten(markdown)
    print(shortened)
    print()
    for token, url in link_map.items():
        print(f"  {token:12s} {url}")


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    if getattr(args, "limit", None) is not None and args.limit < 0:
        print("Error: --limit must be non-negative", file=sys.stderr)
        sys.exit(1)

    settings = NewsletterIngestorSettings()
    setup_logging(settings.log_level)

    if args.command == "normalize":
        try:
            _normalize_file(args.file, args.shorten, settings.link_prefix)
        except OSError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        return

    pipeline = NewsletterPipeline(settings=settings, on_progress=on_progress)

    try:
        if args.command == "run":
            progress = pipeline.run(label=args.label, limit=args.limit)
            print(f"\n\nComplete: {progress}")

        elif args.command == "watermark":
            watermark = pipeline.get_watermark()
            print(watermark.isoformat() if watermark else "No messages recorded yet")

        elif args.command == "status":
            counts = pipeline.get_status()
            print("\nMessage counts by status:")
            for status, count in sorted(counts.items()):
                print(f"  {status}: {count}")

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        pipeline.close()


if __name__ == "__main__":
    main()
