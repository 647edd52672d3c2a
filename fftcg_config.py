# fftcg_config.py
# Defaults, site selectors and config-file loading for the FFTCG card browser scraper.

import copy
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

# ------------ Site -------------
BASE = "https://fftcg.square-enix-games.com"
CARD_BROWSER_URL = f"{BASE}/en/card-browser"
IMAGE_URL_TEMPLATE = "https://fftcg.cdn.sewest.net/images/cards/full/{code}_eg.jpg"

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)
REQUEST_HEADERS = {"User-Agent": USER_AGENT, "Referer": BASE}
IMAGE_TIMEOUT = 30

# Every known set, in release order. Batch mode walks this list unless the config replaces it.
ALL_SETS: List[str] = [
    "Opus I", "Opus II", "Opus III", "Opus IV", "Opus V", "Opus VI", "Opus VII",
    "Opus VIII", "Opus IX", "Opus X", "Opus XI", "Opus XII", "Opus XIII", "Opus XIV",
    "Crystal Dominion",
    "Emissaries of Light",
    "Rebellion's Call",
    "Resurgence of Power",
    "From Nightmares",
    "Dawn of Heroes",
    "Beyond Destiny",
    "Hidden Hope",
    "Hidden Trials",
    "Hidden Legends",
    "Tears of the Planet",
]

# ------------ Defaults -------------
# Same nested shape as the JSON config file.
DEFAULT_CONFIG: Dict[str, Any] = {
    "output": {
        "directory": "./output",
        "downloadImages": True,
        "saveJson": True,
        "jsonFilename": "cards.json",
        "imageSubdir": "images",
    },
    "filters": {
        "sets": None,
        "elements": None,
        "types": None,
        "rarities": None,
        "categories": None,
        "costs": None,
        "flags": None,
        "keyword": None,
        "code": None,
    },
    "scraping": {
        "includeCardDetails": True,
        "delayBetweenCards": 150,
        "delayBetweenPages": 500,
        "headless": True,
        "timeout": 60_000,
        "saveInterval": 10,
        "stallThreshold": 5,
        "safetyCeiling": 500,
        "firstResultPolls": 20,
        "firstResultInterval": 500,
    },
    "images": {
        "concurrent": 5,
    },
    "batch": {
        "sets": None,
        "delayBetweenSets": 3000,
    },
}


# ------------ Filters -------------
@dataclass
class FilterSpec:
    """Requested filter values per dimension. List order is application order."""

    sets: List[str] = field(default_factory=list)
    types: List[str] = field(default_factory=list)
    elements: List[str] = field(default_factory=list)
    rarities: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    costs: List[str] = field(default_factory=list)
    flags: List[str] = field(default_factory=list)
    keyword: Optional[str] = None
    code: Optional[str] = None

    def __post_init__(self):
        for name in ("sets", "types", "elements", "rarities", "categories", "costs", "flags"):
            values = getattr(self, name) or []
            if isinstance(values, (str, int)):
                values = [values]
            # unique per dimension, first occurrence wins
            setattr(self, name, list(dict.fromkeys(str(v) for v in values if str(v).strip())))
        self.keyword = (self.keyword or "").strip() or None
        self.code = (self.code or "").strip() or None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "FilterSpec":
        data = data or {}
        return cls(
            sets=data.get("sets") or [],
            types=data.get("types") or [],
            elements=data.get("elements") or [],
            rarities=data.get("rarities") or [],
            categories=data.get("categories") or [],
            costs=data.get("costs") or [],
            flags=data.get("flags") or [],
            keyword=data.get("keyword"),
            code=data.get("code"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sets": list(self.sets) or None,
            "elements": list(self.elements) or None,
            "types": list(self.types) or None,
            "rarities": list(self.rarities) or None,
            "categories": list(self.categories) or None,
            "costs": list(self.costs) or None,
            "flags": list(self.flags) or None,
            "keyword": self.keyword,
            "code": self.code,
        }

    def restricted_to_set(self, set_name: str) -> "FilterSpec":
        spec = copy.deepcopy(self)
        spec.sets = [set_name]
        return spec

    def is_empty(self) -> bool:
        return not any(self.to_dict().values())


# ------------ Run config -------------
@dataclass
class ScraperConfig:
    output_dir: Path = Path("./output")
    download_images: bool = True
    save_json: bool = True
    json_filename: str = "cards.json"
    image_subdir: str = "images"
    filters: FilterSpec = field(default_factory=FilterSpec)
    include_details: bool = True
    delay_between_cards_ms: int = 150
    delay_between_pages_ms: int = 500
    headless: bool = True
    timeout_ms: int = 60_000
    save_interval: int = 10
    stall_threshold: int = 5
    safety_ceiling: int = 500
    first_result_polls: int = 20
    first_result_interval_ms: int = 500
    image_concurrency: int = 5
    batch_sets: List[str] = field(default_factory=lambda: list(ALL_SETS))
    delay_between_sets_ms: int = 3000

    @property
    def image_dir(self) -> Path:
        return self.output_dir / self.image_subdir

    @property
    def partial_filename(self) -> str:
        name = Path(self.json_filename)
        return f"{name.stem}_partial{name.suffix}"

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ScraperConfig":
        merged = merge_config(DEFAULT_CONFIG, raw or {})
        out, scraping = merged["output"], merged["scraping"]
        return cls(
            output_dir=Path(out["directory"]),
            download_images=bool(out["downloadImages"]),
            save_json=bool(out["saveJson"]),
            json_filename=out["jsonFilename"],
            image_subdir=out["imageSubdir"],
            filters=FilterSpec.from_dict(merged["filters"]),
            include_details=bool(scraping["includeCardDetails"]),
            delay_between_cards_ms=int(scraping["delayBetweenCards"]),
            delay_between_pages_ms=int(scraping["delayBetweenPages"]),
            headless=bool(scraping["headless"]),
            timeout_ms=int(scraping["timeout"]),
            save_interval=int(scraping["saveInterval"]),
            stall_threshold=int(scraping["stallThreshold"]),
            safety_ceiling=int(scraping["safetyCeiling"]),
            first_result_polls=int(scraping["firstResultPolls"]),
            first_result_interval_ms=int(scraping["firstResultInterval"]),
            image_concurrency=int(merged["images"]["concurrent"]),
            batch_sets=list(merged["batch"]["sets"] or ALL_SETS),
            delay_between_sets_ms=int(merged["batch"]["delayBetweenSets"]),
        )

    def for_set(self, set_name: str, set_dir: Path) -> "ScraperConfig":
        """Copy of this config writing to set_dir and filtering on set_name only."""
        cfg = copy.deepcopy(self)
        cfg.output_dir = set_dir
        cfg.filters = self.filters.restricted_to_set(set_name)
        return cfg


def merge_config(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Deep-merge overrides over defaults. None values in overrides are ignored."""
    result = copy.deepcopy(defaults)
    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = merge_config(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def load_config(path: Optional[Path] = None) -> ScraperConfig:
    """Build a ScraperConfig from the defaults, optionally merged with a JSON file."""
    if path is None:
        return ScraperConfig.from_dict({})
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")
    return ScraperConfig.from_dict(raw)
