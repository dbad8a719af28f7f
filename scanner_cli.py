from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from tqdm.contrib.logging import logging_redirect_tqdm

from photo_scanner.api import embed_previews, scan, search
from photo_scanner.config import ScannerConfig
from photo_scanner.errors import ConfigurationError, InferenceError
from photo_scanner.progress import ProgressReporter, format_summary
from photo_scanner.utils import snippet

EXIT_OK = 0
EXIT_CONFIG = 2
EXIT_CANCELLED = 130

logger = logging.getLogger("photo_scanner.cli")


def configure_logging(level: str | None, log_file: str | None) -> None:
    level_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        Path(log_file).expanduser().parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(Path(log_file).expanduser(), encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Describe and index every photo below a folder")
    parser.add_argument("root", help="Root folder of the photo library")
    parser.add_argument("--concurrency", type=int, default=None, help="Photos in flight at once")
    parser.add_argument("--force", action="store_true", help="Re-describe photos that already have a description")
    parser.add_argument("--vision-model", default=None)
    parser.add_argument("--embedding-model", default=None)
    parser.add_argument("--collection", default=None, help="Vector collection name")
    parser.add_argument("--dimension", type=int, default=None, help="Embedding dimensionality")
    parser.add_argument("--lancedb", default=None, help="LanceDB URI")
    parser.add_argument("--embed-previews", action="store_true", help="Embed EXIF previews instead of describing")
    parser.add_argument("--log-level", default=None)
    parser.add_argument("--log-file", default=None)
    parser.add_argument("--no-progress", action="store_true")
    parser.add_argument("--json", action="store_true", help="Print the run summary as JSON")
    return parser.parse_args(argv)


def parse_search_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Search described photos by natural language")
    parser.add_argument("query", nargs="+", help="Search query")
    parser.add_argument("-n", "--top-k", type=int, default=10)
    parser.add_argument("--answer", action="store_true", help="Ask the chat model to answer from the results")
    parser.add_argument("--collection", default=None)
    parser.add_argument("--lancedb", default=None)
    parser.add_argument("--log-level", default=None)
    parser.add_argument("--json", action="store_true")
    return parser.parse_args(argv)


def install_interrupt_handler(cancel_event: threading.Event) -> None:
    def handler(signum: int, frame: Any) -> None:
        if cancel_event.is_set():
            raise KeyboardInterrupt
        logger.warning("Cancelling: no new photos will be started, waiting for in-flight ones")
        cancel_event.set()

    signal.signal(signal.SIGINT, handler)


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    try:
        cfg = ScannerConfig.from_env(
            concurrency=args.concurrency,
            force=args.force or None,
            vision_model=args.vision_model,
            embedding_model=args.embedding_model,
            collection_name=args.collection,
            embedding_dimension=args.dimension,
            lancedb_uri=args.lancedb,
        )
        if args.embed_previews:
            out = embed_previews(args.root, force=args.force, cfg=cfg)
            print(json.dumps(out, ensure_ascii=False, indent=2))
            return EXIT_OK

        cancel_event = threading.Event()
        install_interrupt_handler(cancel_event)
        reporter = ProgressReporter(enabled=not args.no_progress and not args.json)
        with logging_redirect_tqdm():
            summary = scan(args.root, cfg=cfg, reporter=reporter, cancel_event=cancel_event)
    except ConfigurationError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return EXIT_CONFIG

    if args.json:
        print(json.dumps(summary.to_dict(), ensure_ascii=False, indent=2))
    else:
        print(format_summary(summary))
    return EXIT_CANCELLED if summary.cancelled else EXIT_OK


def render_results(rows: list[dict[str, Any]], answer: str | None = None) -> None:
    from rich.console import Console
    from rich.table import Table

    console = Console()
    table = Table(title="Photo Search Results")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Folder", style="magenta")
    table.add_column("Filename", style="bold")
    table.add_column("Description")
    table.add_column("Score", justify="right")
    for i, row in enumerate(rows, start=1):
        table.add_row(
            str(i),
            row["folder"] or "-",
            Path(row["file_path"]).name,
            snippet(row["description"]),
            f"{row['score']:.3f}",
        )
    console.print(table)
    if answer:
        console.print(f"\n[bold]Answer:[/bold] {answer}")


def search_main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = parse_search_args(argv)
    configure_logging(args.log_level or "WARNING", None)

    query = " ".join(args.query).strip()
    if not query:
        raise SystemExit("Query cannot be empty.")

    try:
        cfg = ScannerConfig.from_env(collection_name=args.collection, lancedb_uri=args.lancedb)
        out = search(query, top_k=max(1, args.top_k), answer=args.answer, cfg=cfg)
    except ConfigurationError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return EXIT_CONFIG
    except InferenceError as exc:
        logger.error("%s: %s", exc.kind, exc)
        return 1

    if args.json:
        print(json.dumps(out, ensure_ascii=False, indent=2))
    elif not out["results"]:
        print("No matches found.")
    else:
        render_results(out["results"], out.get("answer"))
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
