# card_details.py
# One card's detail overlay -> CardRecord.

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Union

from playwright.sync_api import TimeoutError as PWTimeoutError

from ability_text import transcode_html
from card_browser import CARD_SELECTOR
from fftcg_config import IMAGE_URL_TEMPLATE

OVERLAY = ".overlay"
OVERLAY_TITLE = ".overlay .bar .title"
OVERLAY_CLOSE = ".overlay .close"
ATTRIBUTE_ROWS = ".overlay .attributes tr"
ABILITY_TEXT_SELECTORS = [
    ".overlay .col.details .text",
    ".overlay .col.details p.text",
    ".overlay .details .text",
    ".overlay p.text",
]
OVERLAY_TIMEOUT = 5_000

RARITY_NAMES = {
    "C": "Common",
    "R": "Rare",
    "H": "Hero",
    "L": "Legend",
    "S": "Starter",
    "B": "Boss",
    "P": "Promo",
    "PR": "Promo",
}

ELEMENT_CLASS_RE = re.compile(r"icon\s+(\w+)")

Number = Union[int, str, None]


@dataclass
class CardRecord:
    code: str
    name: Optional[str] = None
    type: Optional[str] = None
    job: Optional[str] = None
    element: Optional[str] = None
    cost: Number = None
    power: Number = None
    rarity: Optional[str] = None
    category: Optional[str] = None
    set_name: Optional[str] = None
    abilities: str = ""
    image_url: Optional[str] = None

    def __post_init__(self):
        if self.image_url is None:
            self.image_url = image_url_for(self.code)

    def to_dict(self) -> Dict[str, object]:
        return {
            "code": self.code,
            "name": self.name,
            "type": self.type,
            "job": self.job,
            "element": self.element,
            "cost": self.cost,
            "power": self.power,
            "rarity": self.rarity,
            "category": self.category,
            "set": self.set_name,
            "abilities": self.abilities,
            "image_url": self.image_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "CardRecord":
        return cls(
            code=str(data["code"]),
            name=data.get("name"),
            type=data.get("type"),
            job=data.get("job"),
            element=data.get("element"),
            cost=data.get("cost"),
            power=data.get("power"),
            rarity=data.get("rarity"),
            category=data.get("category"),
            set_name=data.get("set"),
            abilities=data.get("abilities") or "",
            image_url=data.get("image_url"),
        )


def image_url_for(code: str) -> str:
    return IMAGE_URL_TEMPLATE.format(code=code)


def rarity_code_to_name(code: Optional[str]) -> Optional[str]:
    """'H' -> 'Hero'. Unknown codes come back unchanged."""
    if not code:
        return code
    return RARITY_NAMES.get(code.strip().upper(), code)


def parse_number(value: Optional[str]) -> Number:
    """'7000' -> 7000, '' -> None, 'X' -> 'X'."""
    value = (value or "").strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return value


def element_from_classes(class_attr: Optional[str]) -> Optional[str]:
    """'icon fire' -> 'Fire'."""
    m = ELEMENT_CLASS_RE.search(class_attr or "")
    if not m:
        return None
    el = m.group(1)
    return el[:1].upper() + el[1:]


# ------------ Overlay -------------
@contextmanager
def detail_view(page, code: str) -> Iterator[None]:
    """Open the card's overlay; close it on every exit path."""
    try:
        page.click(f'{CARD_SELECTOR}[data-code="{code}"]')
        page.wait_for_selector(OVERLAY, state="visible", timeout=OVERLAY_TIMEOUT)
        page.wait_for_timeout(300)
        yield
    finally:
        try:
            page.click(OVERLAY_CLOSE, timeout=OVERLAY_TIMEOUT)
            page.wait_for_timeout(100)
        except Exception as e:
            logging.debug("Overlay close for %s failed (%s); pressing Escape", code, e)
            try:
                page.keyboard.press("Escape")
            except Exception as ee:
                logging.debug("Escape for %s failed: %s", code, ee)


def read_ability_text(page, code: str = "") -> str:
    """First candidate location that yields non-empty text wins."""
    for selector in ABILITY_TEXT_SELECTORS:
        try:
            handle = page.query_selector(selector)
            if not handle:
                continue
            text = transcode_html(handle.inner_html())
            if text:
                logging.debug("Abilities for %s: %r", code, text[:60])
                return text
        except Exception as e:
            logging.debug("Selector %s failed: %s", selector, e)
    _log_overlay_structure(page, code)
    return ""


def _log_overlay_structure(page, code: str) -> None:
    try:
        info = page.eval_on_selector(
            OVERLAY,
            """el => {
                const out = [];
                out.push('Classes found: ' + Array.from(el.querySelectorAll('*')).slice(0, 20)
                    .map(e => e.className).filter(c => c).join(', '));
                const textEl = el.querySelector('.text') || el.querySelector('p.text') || el.querySelector('.col.details');
                if (textEl) out.push('Text element HTML: ' + textEl.outerHTML.substring(0, 300));
                return out.join(' | ');
            }""",
        )
        logging.warning("DEBUG %s overlay structure: %s", code, info)
    except Exception as e:
        logging.debug("Could not debug overlay: %s", e)


def read_attributes(page, card: CardRecord) -> None:
    """Fill typed fields from the label/value rows of the overlay's attribute table."""
    for row in page.query_selector_all(ATTRIBUTE_ROWS):
        cells = row.query_selector_all("td")
        if len(cells) < 2:
            continue
        label = (cells[0].text_content() or "").lower().replace(":", "").strip()

        # element cells hold icons only
        if label == "element":
            elements: List[str] = []
            for icon in cells[1].query_selector_all(".icon"):
                el = element_from_classes(icon.get_attribute("class"))
                if el and el not in elements:
                    elements.append(el)
            card.element = "/".join(elements) or None
            continue

        value = (cells[1].text_content() or "").strip()
        if label == "type":
            card.type = value or None
        elif label == "job":
            card.job = value or None
        elif label == "cost":
            card.cost = parse_number(value)
        elif label == "power":
            card.power = parse_number(value)
        elif label == "serial type":
            card.rarity = rarity_code_to_name(value) or None
        elif label == "category":
            card.category = value or None
        elif label == "set":
            card.set_name = value or None


def scrape_card_details(page, code: str) -> CardRecord:
    """
    Open the overlay for one code and read it into a CardRecord.

    Never raises: on failure the record holds whatever was read before it.
    """
    card = CardRecord(code=code)
    try:
        with detail_view(page, code):
            title = page.text_content(OVERLAY_TITLE)
            card.name = (title or "").strip() or None
            card.abilities = read_ability_text(page, code)
            read_attributes(page, card)
    except PWTimeoutError as e:
        logging.warning("Timeout scraping %s: %s", code, e)
    except Exception as e:
        logging.warning("Error scraping %s: %s", code, e)
    return card
