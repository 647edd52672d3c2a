# card_browser.py
# Card browser page driving: session scope, filter panel, result loading, code collection.
# Everything here talks to a Playwright Page; nothing here parses card details.

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional

from playwright.sync_api import Page, sync_playwright, TimeoutError as PWTimeoutError

from fftcg_config import CARD_BROWSER_URL, USER_AGENT, FilterSpec, ScraperConfig

# ------------ Selectors -------------
FILTER_SELECTORS: Dict[str, Dict[str, object]] = {
    # multi-select filters keep their items under .options
    "set": {"container": ".filter.set.multi .options"},
    "category": {"container": ".filter.category.multi .options"},
    "type": {
        "container": ".filter.type.select",
        "values": {
            "Backup": "backup", "Crystal": "crystal", "Forward": "forward",
            "Monster": "monster", "Summon": "summon",
        },
    },
    "element": {
        "container": ".filter.element.select",
        "values": {
            "Fire": "fire", "Ice": "ice", "Wind": "wind", "Earth": "earth",
            "Lightning": "lightning", "Water": "water", "Light": "light",
            "Dark": "darkness", "Darkness": "darkness",
        },
    },
    "rarity": {
        "container": ".filter.rarity.select",
        "values": {
            "Common": "c", "Rare": "r", "Hero": "h", "Legend": "l",
            "Starter": "s", "Boss": "b", "Promo": "pr",
            "C": "c", "R": "r", "H": "h", "L": "l", "S": "s", "B": "b", "PR": "pr",
        },
    },
    "cost": {"container": ".filter.cost.select"},
    "flag": {
        "container": ".filter.flag.select",
        "values": {
            "Special": "special", "EX Burst": "exburst", "Generic": "multi",
            "special": "special", "exburst": "exburst", "multi": "multi",
        },
    },
}
FILTER_ITEM = ".item[data-value]"

CARD_SELECTOR = ".results .item[data-code]"
RESULTS_HEADER = ".results .header span"
LOAD_MORE = '.results .more:not([style*="display: none"])'
NO_RESULTS = '.results .empty:not([style*="display: none"])'
KEYWORD_INPUT = 'input[name="keyword"]'
CODE_INPUT = 'input[name="code"]'
FILTERS_PANEL = ".filters"
SET_FILTER_READY = ".filter.set.multi .options .item[data-value]"

COOKIE_SELECTORS = [
    ".osano-cm-accept-all",
    ".osano-cm-button--type_accept",
    'button:has-text("Accept")',
    'button:has-text("Reject Non-Essential")',
    ".osano-cm-dialog__close",
]
SEARCH_SELECTORS = [
    ".card-search button",
    ".search-btn",
    'button[role="search"]',
    ".card-search",
]
TOGGLE_SELECTORS = [
    ".card-filter .toggle",
    ".toggle.noselect",
    ".item.card-filter",
]

# Handles "(148)" and "(50/219)"
EXPECTED_TOTAL_RE = re.compile(r"\((?:\d+/)?(\d+)\)")

CLICK_TIMEOUT = 5_000
SET_SETTLE_MS = 300
FILTER_SETTLE_MS = 200


class CriticalFilterError(RuntimeError):
    """A required filter (set) could not be applied; scraping would not be bounded."""


# ------------ Session -------------
@contextmanager
def browser_session(config: ScraperConfig) -> Iterator[Page]:
    """Launch Chromium, yield a Page, always close the browser."""
    with sync_playwright() as p:
        logging.info("Launching Chromium (headless=%s)", config.headless)
        browser = p.chromium.launch(headless=config.headless)
        try:
            context = browser.new_context(
                user_agent=USER_AGENT,
                locale="en-US",
                viewport={"width": 1400, "height": 900},
            )
            page = context.new_page()
            page.set_default_timeout(config.timeout_ms)
            yield page
        finally:
            browser.close()
            logging.info("Browser closed")


def _first_visible(page, selectors: Iterable[str]):
    for selector in selectors:
        try:
            handle = page.query_selector(selector)
            if handle and handle.is_visible():
                return selector, handle
        except Exception as e:
            logging.debug("Selector %s not usable: %s", selector, e)
    return None, None


def dismiss_cookie_banner(page) -> bool:
    selector, button = _first_visible(page, COOKIE_SELECTORS)
    if not button:
        return False
    logging.debug("Clicking cookie banner: %s", selector)
    button.click()
    page.wait_for_timeout(500)
    return True


def _panel_hidden(page) -> bool:
    panel = page.query_selector(FILTERS_PANEL)
    if not panel:
        return True
    style = (panel.get_attribute("style") or "").replace(" ", "")
    return "display:none" in style


def expand_filters_panel(page) -> bool:
    """The filters panel starts collapsed. Click its toggle until the panel shows."""
    if not _panel_hidden(page):
        logging.debug("Filters panel already visible")
        return True
    logging.info("Filters panel is hidden, clicking toggle to expand...")
    for selector in TOGGLE_SELECTORS:
        try:
            toggle = page.query_selector(selector)
            if not toggle or not toggle.is_visible():
                continue
            toggle.click()
            page.wait_for_timeout(500)
            if not _panel_hidden(page):
                logging.info("Filters panel expanded")
                return True
        except Exception as e:
            logging.debug("Toggle %s failed: %s", selector, e)
    logging.error("Could not expand filters panel!")
    return False


def open_card_browser(page, url: str = CARD_BROWSER_URL) -> None:
    logging.info("Navigating to: %s", url)
    page.goto(url, wait_until="domcontentloaded")
    page.wait_for_timeout(1000)
    dismiss_cookie_banner(page)
    expand_filters_panel(page)
    page.wait_for_timeout(500)
    try:
        page.wait_for_selector(SET_FILTER_READY, timeout=30_000)
        logging.info("Filters loaded")
    except PWTimeoutError:
        logging.warning("Timeout waiting for filter items, expanding filters again...")
        expand_filters_panel(page)
        page.wait_for_timeout(1000)
    # no search yet; filters go first


def click_search_button(page) -> bool:
    selector, button = _first_visible(page, SEARCH_SELECTORS)
    if not button:
        logging.warning("Could not find Search button!")
        return False
    logging.info("Clicking Search button: %s", selector)
    button.click()
    return True


# ------------ Filters -------------
@dataclass
class FilterOutcome:
    applied: int = 0
    failed: int = 0


def filter_value_selector(dimension: str, value: str) -> str:
    conf = FILTER_SELECTORS[dimension]
    data_value = (conf.get("values") or {}).get(value, value)
    return f'{conf["container"]} .item[data-value="{data_value}"]'


def click_filter_item(page, dimension: str, value: str) -> bool:
    if dimension not in FILTER_SELECTORS:
        logging.warning("Unknown filter type: %s", dimension)
        return False
    expand_filters_panel(page)
    selector = filter_value_selector(dimension, value)
    logging.debug("Looking for: %s", selector)
    try:
        item = page.query_selector(selector)
        if not item:
            logging.error("Filter item NOT FOUND: %s", selector)
            try:
                available = page.eval_on_selector_all(
                    f'{FILTER_SELECTORS[dimension]["container"]} {FILTER_ITEM}',
                    "els => els.slice(0, 10).map(e => e.getAttribute('data-value'))",
                )
            except Exception:
                available = []
            logging.warning("Available %s values: %s...", dimension, ", ".join(available or []))
            return False

        item.scroll_into_view_if_needed()
        page.wait_for_timeout(200)
        item.click(timeout=CLICK_TIMEOUT)
        logging.info("Clicked %s: %r", dimension, value)

        page.wait_for_timeout(200)
        if "selected" in (item.get_attribute("class") or ""):
            logging.debug("Filter %r is now selected", value)
        return True
    except Exception as e:
        logging.error("Error clicking %s=%r: %s", dimension, value, e)
        return False


# set first; the rest in a fixed order
FILTER_ORDER = [
    ("set", "sets"),
    ("type", "types"),
    ("element", "elements"),
    ("rarity", "rarities"),
    ("category", "categories"),
    ("cost", "costs"),
    ("flag", "flags"),
]


def apply_filters(page, filters: FilterSpec, loader: Optional["ResultLoader"] = None) -> FilterOutcome:
    """Click every requested filter value, then search. Raises CriticalFilterError on a set failure."""
    outcome = FilterOutcome()
    expand_filters_panel(page)

    for dimension, attr in FILTER_ORDER:
        values = getattr(filters, attr)
        if not values:
            continue
        logging.info("Applying %s filter: %s", dimension.upper(), ", ".join(values))
        for value in values:
            if click_filter_item(page, dimension, value):
                outcome.applied += 1
            elif dimension == "set":
                logging.error("CRITICAL: Failed to apply SET filter %r! Aborting to avoid loading every card.", value)
                raise CriticalFilterError(f"Critical filter (set) {value!r} failed to apply")
            else:
                outcome.failed += 1
                logging.warning("Skipping %s filter %r", dimension, value)
            page.wait_for_timeout(SET_SETTLE_MS if dimension == "set" else FILTER_SETTLE_MS)

    for label, selector, text in (("KEYWORD", KEYWORD_INPUT, filters.keyword), ("CODE", CODE_INPUT, filters.code)):
        if not text:
            continue
        logging.info("Applying %s: %s", label, text)
        try:
            page.fill(selector, text)
            outcome.applied += 1
        except Exception as e:
            outcome.failed += 1
            logging.warning("Could not fill %s input: %s", label.lower(), e)

    if outcome.applied > 0:
        logging.info("Applied %d filter(s), clicking Search...", outcome.applied)
        click_search_button(page)
        if loader is not None:
            loader.await_first_results()
        try:
            logging.info("Results: %s", page.text_content(RESULTS_HEADER))
        except Exception as e:
            logging.debug("No results header yet: %s", e)
    return outcome


# ------------ Result loading -------------
class LoadState(Enum):
    AWAITING_FIRST_RESULTS = "awaiting_first_results"
    CONVERGING = "converging"
    CONVERGED = "converged"
    STALLED = "stalled"
    SAFETY_STOPPED = "safety_stopped"


TERMINAL_STATES = {LoadState.CONVERGED, LoadState.STALLED, LoadState.SAFETY_STOPPED}


@dataclass
class LoadResult:
    state: LoadState
    count: int
    expected_total: Optional[int] = None
    polls: int = 0


def parse_expected_total(text: Optional[str]) -> Optional[int]:
    """'(148)' -> 148, '(50/219)' -> 219, anything else -> None."""
    if not text:
        return None
    m = EXPECTED_TOTAL_RE.search(text)
    return int(m.group(1)) if m else None


class ResultLoader:
    """
    Drives the result list to its full size.

    AWAITING_FIRST_RESULTS -> CONVERGING -> CONVERGED | STALLED | SAFETY_STOPPED
    """

    def __init__(self, page,
                 stall_threshold: int = 5,
                 safety_ceiling: int = 500,
                 first_result_polls: int = 20,
                 first_result_interval_ms: int = 500,
                 page_delay_ms: int = 500,
                 max_polls: int = 1000):
        self.page = page
        self.max_polls = max_polls
        self.stall_threshold = stall_threshold
        self.safety_ceiling = safety_ceiling
        self.first_result_polls = first_result_polls
        self.first_result_interval_ms = first_result_interval_ms
        self.page_delay_ms = page_delay_ms
        self.state = LoadState.AWAITING_FIRST_RESULTS
        self.first: Optional[LoadResult] = None

    @classmethod
    def from_config(cls, page, config: ScraperConfig) -> "ResultLoader":
        return cls(
            page,
            stall_threshold=config.stall_threshold,
            safety_ceiling=config.safety_ceiling,
            first_result_polls=config.first_result_polls,
            first_result_interval_ms=config.first_result_interval_ms,
            page_delay_ms=config.delay_between_pages_ms,
        )

    def visible_count(self) -> int:
        return len(self.page.query_selector_all(CARD_SELECTOR))

    def expected_total(self) -> Optional[int]:
        try:
            return parse_expected_total(self.page.text_content(RESULTS_HEADER))
        except Exception:
            return None

    def no_results_shown(self) -> bool:
        handle = self.page.query_selector(NO_RESULTS)
        if not handle or not handle.is_visible():
            return False
        logging.warning("No Results message: %r", (handle.text_content() or "").strip())
        return True

    def _load_more(self) -> bool:
        button = self.page.query_selector(LOAD_MORE)
        if not button or not button.is_visible():
            return False
        logging.debug("Clicking Load More...")
        button.click()
        self.page.wait_for_timeout(self.page_delay_ms)
        return True

    def _scroll_to_bottom(self) -> None:
        self.page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
        self.page.wait_for_timeout(self.page_delay_ms)

    def await_first_results(self) -> LoadResult:
        """Poll until results or the empty indicator show. Runs once per loader; later calls reuse the result."""
        if self.first is not None:
            return self.first
        self.state = LoadState.AWAITING_FIRST_RESULTS
        self.first = self._poll_first_results()
        return self.first

    def _poll_first_results(self) -> LoadResult:
        count = 0
        for poll in range(1, self.first_result_polls + 1):
            count = self.visible_count()
            if count > 0:
                self.state = LoadState.CONVERGING
                return LoadResult(self.state, count, polls=poll)
            if self.no_results_shown():
                self.state = LoadState.CONVERGED
                return LoadResult(self.state, 0, expected_total=0, polls=poll)
            self.page.wait_for_timeout(self.first_result_interval_ms)
        logging.error("No cards found after %d polls! Check if filters returned results.", self.first_result_polls)
        self.state = LoadState.STALLED
        return LoadResult(self.state, count, polls=self.first_result_polls)

    def load_all(self) -> LoadResult:
        """Run the loop to a terminal state and return the final visible count."""
        first = self.await_first_results()
        if first.state in TERMINAL_STATES:
            return first

        expected = self.expected_total()
        logging.info("Expected total: %s", expected if expected is not None else "unknown")
        if expected is None and first.count >= 50:
            logging.warning("No expected count and already %d cards. Filter may have failed!", first.count)

        previous = first.count
        stalls = 0
        polls = 0
        while self.state not in TERMINAL_STATES:
            polls += 1
            if polls > self.max_polls:
                logging.warning("Gave up loading after %d polls", self.max_polls)
                self.state = LoadState.STALLED
                break
            count = self.visible_count()
            expected = self.expected_total() or expected

            if expected is None and count >= self.safety_ceiling:
                logging.warning("SAFETY STOP: Loaded %d cards without known total. Filter may have failed!", count)
                self.state = LoadState.SAFETY_STOPPED
                return LoadResult(self.state, count, expected, polls)

            if expected is not None and count >= expected:
                logging.info("All %d cards loaded", count)
                self.state = LoadState.CONVERGED
                return LoadResult(self.state, count, expected, polls)

            if count == previous:
                stalls += 1
                if self._load_more():
                    stalls = 0
                elif stalls >= self.stall_threshold:
                    logging.warning("Card count stuck at %d/%s after %d polls; continuing with what loaded",
                                    count, expected if expected is not None else "?", stalls)
                    self.state = LoadState.STALLED
                    return LoadResult(self.state, count, expected, polls)
                else:
                    self._scroll_to_bottom()
            else:
                logging.info("Loaded %d/%s cards", count, expected if expected is not None else "?")
                stalls = 0
            previous = count

        return LoadResult(self.state, self.visible_count(), expected, polls)


# ------------ Codes -------------
def unique_codes(codes: Iterable[Optional[str]]) -> List[str]:
    """Drop empties and repeats, keeping first-seen order."""
    return list(dict.fromkeys(c.strip() for c in codes if c and c.strip()))


def collect_card_codes(page, limit: Optional[int] = None) -> List[str]:
    items = page.query_selector_all(CARD_SELECTOR)
    if limit is not None:
        items = items[:limit]
    codes = unique_codes(item.get_attribute("data-code") for item in items)
    logging.info("Found %d unique card codes", len(codes))
    return codes
