# card_store.py
# Snapshots on disk (partial / complete), card code lists, card images, combined datasets.

import json
import logging
import re
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import requests

from card_details import CardRecord
from fftcg_config import IMAGE_TIMEOUT, REQUEST_HEADERS, ScraperConfig

CODES_FILENAME = "card_codes.json"
SUMMARY_FILENAME = "batch_summary.json"
COMBINED_FILENAME = "all_cards.json"


def utc_stamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def sanitize_filename(name: str) -> str:
    name = (
        name.replace(":", " -")
        .replace("/", "-")
        .replace("\\", "-")
        .replace("|", "-")
        .replace("*", "x")
        .replace("?", "")
        .replace('"', "'")
        .strip()
    )
    name = re.sub(r"\s+", " ", name)
    return name.rstrip(" .")


def write_json(path: Path, data: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


def read_json(path: Path) -> Optional[dict]:
    """Parsed JSON object, or None when the file is missing or unreadable."""
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logging.warning("Failed to read %s (%s)", path, e)
        return None
    return data if isinstance(data, dict) else None


# ------------ Snapshots -------------
class SnapshotLedger:
    """
    In-memory card list for one run plus its snapshots on disk.

    Every `save_interval` records a partial snapshot overwrites `<name>_partial.json`.
    `complete()` writes `<name>.json` and removes the partial file.
    """

    def __init__(self, config: ScraperConfig):
        self.config = config
        self.cards: List[CardRecord] = []

    @property
    def complete_path(self) -> Path:
        return self.config.output_dir / self.config.json_filename

    @property
    def partial_path(self) -> Path:
        return self.config.output_dir / self.config.partial_filename

    @property
    def codes_path(self) -> Path:
        return self.config.output_dir / CODES_FILENAME

    def snapshot(self, complete: bool) -> Dict[str, object]:
        return {
            "scraped_at": utc_stamp(),
            "filters": self.config.filters.to_dict(),
            "total": len(self.cards),
            "complete": complete,
            "cards": [c.to_dict() for c in self.cards],
        }

    def record(self, card: CardRecord) -> None:
        self.cards.append(card)
        if self.config.save_interval and len(self.cards) % self.config.save_interval == 0:
            self.save_partial()
            logging.debug("Progress saved (%d cards)", len(self.cards))

    def save_partial(self) -> Optional[Path]:
        if not self.cards:
            return None
        write_json(self.partial_path, self.snapshot(complete=False))
        return self.partial_path

    def complete(self) -> Path:
        write_json(self.complete_path, self.snapshot(complete=True))
        logging.info("Saved %d cards to %s", len(self.cards), self.complete_path)
        if self.partial_path != self.complete_path:
            self.partial_path.unlink(missing_ok=True)
        return self.complete_path

    def emergency_save(self) -> Optional[Path]:
        """Best effort: a failing write is logged, never raised."""
        if not self.cards:
            return None
        logging.warning("Attempting to save %d cards before exit...", len(self.cards))
        try:
            path = self.save_partial()
            logging.info("Emergency save complete: %d cards saved to %s", len(self.cards), path)
            return path
        except Exception as e:
            logging.error("Could not save: %s", e)
            return None

    def save_codes(self, codes: List[str]) -> Path:
        write_json(self.codes_path, {
            "scraped_at": utc_stamp(),
            "filters": self.config.filters.to_dict(),
            "total": len(codes),
            "codes": codes,
        })
        logging.info("Card codes saved to %s", self.codes_path)
        return self.codes_path


def complete_snapshot_path(config: ScraperConfig) -> Path:
    return config.output_dir / config.json_filename


def read_snapshot_cards(path: Path) -> Optional[List[dict]]:
    """Cards of a complete snapshot, or None when it is missing, unreadable or not complete."""
    data = read_json(path)
    if data is None:
        return None
    cards = data.get("cards")
    if not isinstance(cards, list) or data.get("complete") is False:
        return None
    return cards


# ------------ Images -------------
def image_path_for(code: str, image_dir: Path) -> Path:
    return image_dir / f"{sanitize_filename(code)}.jpg"


def make_session() -> requests.Session:
    sess = requests.Session()
    sess.headers.update(REQUEST_HEADERS)
    return sess


def download_image(card: CardRecord, image_dir: Path, session: Optional[requests.Session] = None) -> bool:
    """Fetch one card image unless it is already on disk. Failures are logged and return False."""
    if not card.image_url:
        logging.debug("No image_url for %s", card.code)
        return False

    target = image_path_for(card.code, image_dir)
    if target.exists() and target.stat().st_size > 0:
        logging.debug("Image exists for %s, skipping", card.code)
        return True

    sess = session or make_session()
    tmp = target.with_suffix(target.suffix + ".tmp")
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with sess.get(card.image_url, stream=True, timeout=IMAGE_TIMEOUT) as r:
            if not r.ok:
                logging.warning("Image download failed for %s: HTTP %s", card.code, r.status_code)
                return False
            with open(tmp, "wb") as f:
                for chunk in r.iter_content(65536):
                    if chunk:
                        f.write(chunk)
        tmp.replace(target)
        logging.debug("Saved %s", target.name)
        return True
    except (requests.RequestException, OSError) as e:
        logging.warning("Image download error for %s: %s", card.code, e)
        tmp.unlink(missing_ok=True)
        return False


def download_images(cards: List[CardRecord], image_dir: Path,
                    concurrent: int = 5, session: Optional[requests.Session] = None) -> Tuple[int, int]:
    """Download in batches of `concurrent`, waiting for each batch. Returns (ok, failed)."""
    success = fail = 0
    if not cards:
        return success, fail
    sess = session or make_session()
    logging.info("Downloading %d images to %s...", len(cards), image_dir)
    logging.info("First image URL: %s", cards[0].image_url)

    with ThreadPoolExecutor(max_workers=concurrent) as executor:
        for i in range(0, len(cards), concurrent):
            batch = cards[i:i + concurrent]
            results = list(executor.map(lambda c: download_image(c, image_dir, sess), batch))
            success += sum(1 for r in results if r)
            fail += sum(1 for r in results if not r)
            pct = round((i + len(batch)) / len(cards) * 100)
            logging.info("Images: %d%% (%d ok, %d failed)", pct, success, fail)

    logging.info("Downloaded %d/%d images", success, len(cards))
    return success, fail


# ------------ Summaries -------------
def summarize_cards(cards: Iterable[CardRecord]) -> Dict[str, Dict[str, int]]:
    cards = list(cards)

    def group(attr: str) -> Dict[str, int]:
        return dict(Counter(getattr(c, attr) or "Unknown" for c in cards))

    return {
        "sets": group("set_name"),
        "rarities": group("rarity"),
        "types": group("type"),
    }


def log_summary(cards: List[CardRecord]) -> None:
    summary = summarize_cards(cards)
    logging.info("=== SUMMARY ===")
    logging.info("Total: %d cards", len(cards))
    logging.info("Sets: %s", json.dumps(summary["sets"], ensure_ascii=False))
    logging.info("Rarities: %s", json.dumps(summary["rarities"], ensure_ascii=False))
    logging.info("Types: %s", json.dumps(summary["types"], ensure_ascii=False))


# ------------ Combine -------------
def combine_sets(set_names: Iterable[str], sets_root: Path, json_filename: str,
                 out_path: Path) -> Dict[str, object]:
    """Concatenate every set's complete snapshot into one file. Missing sets are skipped."""
    sets: List[Dict[str, object]] = []
    cards: List[dict] = []
    for name in set_names:
        path = sets_root / sanitize_filename(name) / json_filename
        set_cards = read_snapshot_cards(path)
        if set_cards is None:
            logging.info("Combine: no complete snapshot for %s, skipping", name)
            continue
        records = [CardRecord.from_dict(c) for c in set_cards if isinstance(c, dict) and c.get("code")]
        if len(records) < len(set_cards):
            logging.warning("Combine: dropped %d malformed cards from %s", len(set_cards) - len(records), name)
        sets.append({"name": name, "count": len(records)})
        cards.extend(r.to_dict() for r in records)

    combined = {
        "scraped_at": utc_stamp(),
        "total": sum(s["count"] for s in sets),
        "sets": sets,
        "cards": cards,
    }
    write_json(out_path, combined)
    logging.info("Combined %d cards from %d sets into %s", combined["total"], len(sets), out_path)
    return combined
