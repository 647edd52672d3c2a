# ability_text.py
# Rich ability text (text nodes + icon spans) -> bracket notation, icons in place,
# e.g. fire/num/down spans before ": Choose 1 Forward." -> "[F][1][Dull]: Choose 1 Forward."
# Pure functions over BeautifulSoup nodes. No browser access.

import re
from typing import List, Optional, Union

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import Comment, ProcessingInstruction

ELEMENT_ICONS = {
    "fire": "F",
    "ice": "I",
    "wind": "W",
    "earth": "E",
    "lightning": "L",
    "water": "A",
    "light": "Lt",
    "dark": "D",
    "darkness": "D",
}

SPECIAL_ICONS = {
    "down": "Dull",
    "dull": "Dull",
    "tap": "Dull",
    "special": "S",
    "s": "S",
    "exburst": "EX",
    "ex-burst": "EX",
    "crystal": "C",
    "c": "C",
}

GENERIC_ICON_CLASSES = {"icon"}

# *Priming Name* -- [F][1]  ->  *Priming Name [F][1]*
PRIMING_RE = re.compile(
    r"(\*Priming\s+[^*]+)\*\s*(?:--\s*)?(\[[^\]]+\](?:\s*(?:--\s*)?\[[^\]]+\])*)"
)
# *Limit Break -- 2*  ->  *Limit Break 2*
LIMIT_BREAK_RE = re.compile(r"\*Limit\s+Break\s*--\s*(\d+)\*")
WS_RE = re.compile(r"\s+")


def _classes(tag: Tag) -> List[str]:
    cls = tag.get("class") or []
    if isinstance(cls, str):
        cls = cls.split()
    return list(cls)


def icon_token(classes: List[str], text: str = "") -> Optional[str]:
    """Bracket token for an icon span, or None when it carries nothing usable."""
    if "num" in classes:
        return f"[{text.strip() or '?'}]"
    for cls in classes:
        key = cls.lower()
        if key in ELEMENT_ICONS:
            return f"[{ELEMENT_ICONS[key]}]"
        if key in SPECIAL_ICONS:
            return f"[{SPECIAL_ICONS[key]}]"
    fallback = next((c for c in classes if c.lower() not in GENERIC_ICON_CLASSES), None)
    return f"[{fallback}]" if fallback else None


def _collect(node, out: List[str]) -> None:
    if isinstance(node, (Comment, ProcessingInstruction)):
        return
    if isinstance(node, NavigableString):
        out.append(str(node))
        return
    if not isinstance(node, Tag):
        return
    if node.name == "br":
        out.append(" ")
        return
    classes = _classes(node)
    if "icon" in classes:
        token = icon_token(classes, node.get_text())
        if token:
            out.append(token)
        return
    if "italic" in classes:
        out.append(f"*{node.get_text().strip()}*")
        return
    for child in node.children:
        _collect(child, out)


def normalize_ability_text(text: str) -> str:
    """Post-process joined ability text. Idempotent: normalize(normalize(s)) == normalize(s)."""
    text = PRIMING_RE.sub(r"\1 \2*", text)
    text = LIMIT_BREAK_RE.sub(r"*Limit Break \1*", text)
    text = WS_RE.sub(" ", text)
    return text.strip()


def transcode_fragment(fragment: Union[Tag, NavigableString, None]) -> str:
    """Depth-first walk of a fragment into a single bracket-notation line."""
    if fragment is None:
        return ""
    parts: List[str] = []
    _collect(fragment, parts)
    return normalize_ability_text("".join(parts))


def transcode_html(html: Optional[str]) -> str:
    """Parse a markup fragment (e.g. an element's inner HTML) and transcode it."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "lxml")
    root = soup.body or soup
    return transcode_fragment(root)
