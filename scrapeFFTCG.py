# scrapeFFTCG.py
# FFTCG card browser scraper: filters -> load all results -> per-card details -> JSON + images.
# Single run (one filter set) or batch over every set with skip-existing and a combined output.
#
# Usage:
#   python scrapeFFTCG.py --set "Opus I"
#   python scrapeFFTCG.py --all [--force] [--resume-from "Opus X"]
#   python scrapeFFTCG.py --combine

import argparse
import logging
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

import requests

from card_browser import ResultLoader, apply_filters, browser_session, collect_card_codes, open_card_browser
from card_details import CardRecord, scrape_card_details
from card_store import (
    COMBINED_FILENAME,
    SUMMARY_FILENAME,
    SnapshotLedger,
    combine_sets,
    complete_snapshot_path,
    download_image,
    download_images,
    log_summary,
    make_session,
    read_snapshot_cards,
    sanitize_filename,
    utc_stamp,
    write_json,
)
from fftcg_config import ScraperConfig, load_config

PROGRESS_EVERY = 20


# ------------ Logging -------------
def setup_logging(log_dir: Path) -> Path:
    log_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = log_dir / f"run-{stamp}.log"

    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)

    fh = logging.FileHandler(log_path, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))

    ch = logging.StreamHandler()
    ch.setLevel(logging.INFO)
    ch.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))

    for h in list(logger.handlers):
        logger.removeHandler(h)
    logger.addHandler(fh)
    logger.addHandler(ch)

    logging.info("Logging to %s", log_path)
    return log_path


# ------------ Single run -------------
@dataclass
class RunContext:
    """Everything one run touches: its config, the open page, the card ledger and an HTTP session."""

    config: ScraperConfig
    page: object
    ledger: SnapshotLedger
    http: requests.Session = field(default_factory=make_session)
    images_ok: int = 0
    images_failed: int = 0


def scrape_details(ctx: RunContext, codes: List[str]) -> None:
    cfg = ctx.config
    logging.info("Scraping details for %d cards...", len(codes))
    for i, code in enumerate(codes, start=1):
        card = scrape_card_details(ctx.page, code)
        ctx.ledger.record(card)

        # one image at a time, right after its card
        if cfg.download_images:
            if download_image(card, cfg.image_dir, ctx.http):
                ctx.images_ok += 1
            else:
                ctx.images_failed += 1

        if i % PROGRESS_EVERY == 0 or i == len(codes):
            img_status = f", {ctx.images_ok} images" if cfg.download_images else ""
            logging.info("Progress: %d/%d cards%s", i, len(codes), img_status)

        ctx.page.wait_for_timeout(cfg.delay_between_cards_ms)

    if cfg.download_images:
        logging.info("Images downloaded incrementally: %d/%d (%d failed)",
                     ctx.images_ok, len(ctx.ledger.cards), ctx.images_failed)


def run_pipeline(ctx: RunContext) -> List[CardRecord]:
    cfg = ctx.config
    open_card_browser(ctx.page)

    loader = ResultLoader.from_config(ctx.page, cfg)
    apply_filters(ctx.page, cfg.filters, loader)
    result = loader.load_all()
    logging.info("Result loading finished: %s with %d cards", result.state.value, result.count)

    if result.count == 0:
        logging.error("No cards to scrape!")
        return []

    codes = collect_card_codes(ctx.page, limit=result.count)
    ctx.ledger.save_codes(codes)

    if cfg.include_details:
        scrape_details(ctx, codes)
    else:
        for code in codes:
            ctx.ledger.cards.append(CardRecord(code=code))

    log_summary(ctx.ledger.cards)

    if cfg.save_json:
        ctx.ledger.complete()

    if cfg.download_images and not cfg.include_details:
        ok, failed = download_images(ctx.ledger.cards, cfg.image_dir, cfg.image_concurrency, ctx.http)
        ctx.images_ok += ok
        ctx.images_failed += failed

    return ctx.ledger.cards


def run_scrape(config: ScraperConfig, session_factory: Callable = browser_session) -> List[CardRecord]:
    """One full run. Any failure saves what was collected as a partial snapshot, then re-raises."""
    start = time.time()
    logging.info("FFTCG scraper starting...")
    logging.info("Output: %s", config.output_dir)
    logging.info("Filters: %s", config.filters.to_dict())
    if config.filters.is_empty():
        logging.warning("No filters set; the whole card browser will be loaded")
    config.output_dir.mkdir(parents=True, exist_ok=True)
    if config.download_images:
        config.image_dir.mkdir(parents=True, exist_ok=True)

    ledger = SnapshotLedger(config)
    try:
        with session_factory(config) as page:
            ctx = RunContext(config=config, page=page, ledger=ledger)
            cards = run_pipeline(ctx)
    except Exception as e:
        logging.error("FATAL: %s", e)
        ledger.emergency_save()
        raise

    logging.info("Complete in %.1fs", time.time() - start)
    return cards


# ------------ Batch -------------
@dataclass
class SetResult:
    name: str
    count: int = 0
    status: str = "scraped"  # scraped | skipped | failed
    error: Optional[str] = None

    def to_dict(self):
        out = {"set": self.name, "count": self.count, "status": self.status}
        if self.error:
            out["error"] = self.error
        return out


def set_dir(config: ScraperConfig, set_name: str) -> Path:
    return config.output_dir / "sets" / sanitize_filename(set_name)


def sets_from(set_names: List[str], resume_from: Optional[str]) -> List[str]:
    if not resume_from:
        return list(set_names)
    if resume_from not in set_names:
        raise ValueError(f"Unknown set to resume from: {resume_from!r}")
    return list(set_names[set_names.index(resume_from):])


def combine_all(config: ScraperConfig, set_names: Optional[List[str]] = None) -> dict:
    return combine_sets(
        set_names if set_names is not None else config.batch_sets,
        config.output_dir / "sets",
        config.json_filename,
        config.output_dir / COMBINED_FILENAME,
    )


def run_batch(config: ScraperConfig,
              set_names: Optional[List[str]] = None,
              force: bool = False,
              resume_from: Optional[str] = None,
              runner: Callable[[ScraperConfig], List[CardRecord]] = run_scrape,
              sleep: Callable[[float], None] = time.sleep) -> List[SetResult]:
    """Scrape every set into its own folder, then write a summary and the combined file."""
    start = time.time()
    all_sets = list(set_names if set_names is not None else config.batch_sets)
    todo = sets_from(all_sets, resume_from)
    results: List[SetResult] = []

    for i, name in enumerate(todo, start=1):
        set_config = config.for_set(name, set_dir(config, name))
        existing = read_snapshot_cards(complete_snapshot_path(set_config))
        if not force and existing is not None:
            logging.info("[%d/%d] Skipping %s; already scraped (%d cards)", i, len(todo), name, len(existing))
            results.append(SetResult(name, len(existing), "skipped"))
            continue

        logging.info("[%d/%d] Scraping set %s", i, len(todo), name)
        try:
            cards = runner(set_config)
            results.append(SetResult(name, len(cards), "scraped"))
        except Exception as e:
            logging.exception("Set %s failed: %s", name, e)
            results.append(SetResult(name, 0, "failed", str(e)))

        if i < len(todo):
            sleep(config.delay_between_sets_ms / 1000)

    failed = [r for r in results if r.status == "failed"]
    summary = {
        "scraped_at": utc_stamp(),
        "elapsed_minutes": round((time.time() - start) / 60, 2),
        "total_cards": sum(r.count for r in results),
        "results": [r.to_dict() for r in results],
    }
    write_json(config.output_dir / SUMMARY_FILENAME, summary)
    logging.info("Batch done: %d cards, %d scraped, %d skipped, %d failed",
                 summary["total_cards"],
                 sum(1 for r in results if r.status == "scraped"),
                 sum(1 for r in results if r.status == "skipped"),
                 len(failed))
    for r in failed:
        logging.warning("Failed set %s: %s", r.name, r.error)

    combine_all(config, all_sets)
    return results


# ------------ CLI -------------
def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Scrape cards from the FFTCG card browser.")
    mode = ap.add_mutually_exclusive_group()
    mode.add_argument("--all", action="store_true", help="Scrape every set into output/sets/<set>/ and combine")
    mode.add_argument("--combine", action="store_true", help="Only combine existing per-set snapshots")
    ap.add_argument("--force", action="store_true", help="Re-scrape sets that already have a complete snapshot")
    ap.add_argument("--resume-from", metavar="SET", help="Start batch mode at this set")
    ap.add_argument("--no-images", action="store_true", help="Do not download card images")
    ap.add_argument("--no-details", action="store_true", help="Only collect card codes, skip detail overlays")
    vis = ap.add_mutually_exclusive_group()
    vis.add_argument("--visible", action="store_true", help="Show the browser window")
    vis.add_argument("--headless", action="store_true", help="Run the browser headless")
    ap.add_argument("--set", dest="set_name", metavar="NAME", help="Filter on one set")
    ap.add_argument("--rarity", metavar="NAME", help="Filter on one rarity")
    ap.add_argument("--category", metavar="NAME", help="Filter on one category")
    ap.add_argument("--config", type=Path, help="JSON config file")
    ap.add_argument("--output", type=Path, help="Output directory")
    return ap


def config_from_args(args: argparse.Namespace) -> ScraperConfig:
    config = load_config(args.config)
    if args.output:
        config.output_dir = args.output
    if args.no_images:
        config.download_images = False
    if args.no_details:
        config.include_details = False
    if args.visible:
        config.headless = False
    if args.headless:
        config.headless = True
    if args.set_name:
        config.filters.sets = [args.set_name]
    if args.rarity:
        config.filters.rarities = [args.rarity]
    if args.category:
        config.filters.categories = [args.category]
    return config


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = config_from_args(args)
    except (OSError, ValueError) as e:
        print(f"[ERROR] Config error: {e}", file=sys.stderr)
        return 1

    log_path = setup_logging(config.output_dir / "logs")
    try:
        if args.combine:
            combine_all(config)
        elif args.all:
            run_batch(config, force=args.force, resume_from=args.resume_from)
        else:
            run_scrape(config)
    except Exception as e:
        logging.exception("Run failed: %s", e)
        return 1
    finally:
        logging.info("Log file: %s", log_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
