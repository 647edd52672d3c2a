from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest
from playwright.sync_api import TimeoutError as PWTimeoutError

from fftcg_config import FilterSpec, ScraperConfig


class FakeElement:
    """Stand-in for a Playwright ElementHandle."""

    def __init__(self, attrs: Optional[Dict[str, str]] = None, text: str = "", html: str = "",
                 visible: bool = True, children: Optional[Dict[str, List["FakeElement"]]] = None,
                 on_click: Optional[Callable[[], None]] = None, fail_click: bool = False):
        self.attrs = attrs or {}
        self.text = text
        self.html = html
        self.visible = visible
        self.children = children or {}
        self.on_click = on_click
        self.fail_click = fail_click
        self.clicks = 0

    def get_attribute(self, name: str) -> Optional[str]:
        return self.attrs.get(name)

    def text_content(self) -> str:
        return self.text

    def inner_html(self) -> str:
        return self.html

    def is_visible(self) -> bool:
        return self.visible

    def scroll_into_view_if_needed(self) -> None:
        pass

    def click(self, timeout=None) -> None:
        if self.fail_click:
            raise PWTimeoutError("click timed out")
        self.clicks += 1
        if self.on_click:
            self.on_click()

    def query_selector_all(self, selector: str) -> List["FakeElement"]:
        return list(self.children.get(selector, []))

    def query_selector(self, selector: str) -> Optional["FakeElement"]:
        found = self.query_selector_all(selector)
        return found[0] if found else None


class FakeKeyboard:
    def __init__(self, page: "FakePage"):
        self.page = page

    def press(self, key: str) -> None:
        self.page.calls.append(("press", key))


class FakePage:
    """Stand-in for a Playwright Page. Selectors map to lists of FakeElements or to text."""

    def __init__(self, elements: Optional[Dict[str, List[FakeElement]]] = None,
                 texts: Optional[Dict[str, str]] = None):
        self.elements = elements or {}
        self.texts = texts or {}
        self.calls: List[tuple] = []
        self.waits: List[int] = []
        self.click_handlers: Dict[str, Callable[[], None]] = {}
        self.failing_clicks: set = set()
        self.keyboard = FakeKeyboard(self)

    # lookups
    def query_selector_all(self, selector: str) -> List[FakeElement]:
        self.calls.append(("query_selector_all", selector))
        return list(self.elements.get(selector, []))

    def query_selector(self, selector: str) -> Optional[FakeElement]:
        self.calls.append(("query_selector", selector))
        found = self.elements.get(selector) or []
        return found[0] if found else None

    def text_content(self, selector: str, timeout=None) -> Optional[str]:
        self.calls.append(("text_content", selector))
        return self.texts.get(selector)

    def eval_on_selector_all(self, selector: str, expression: str):
        self.calls.append(("eval_on_selector_all", selector))
        return [e.get_attribute("data-value") for e in self.elements.get(selector, [])][:10]

    def eval_on_selector(self, selector: str, expression: str):
        self.calls.append(("eval_on_selector", selector))
        return ""

    # actions
    def goto(self, url: str, wait_until=None) -> None:
        self.calls.append(("goto", url))

    def click(self, selector: str, timeout=None) -> None:
        self.calls.append(("click", selector))
        if selector in self.failing_clicks:
            raise PWTimeoutError(f"Timeout clicking {selector}")
        handler = self.click_handlers.get(selector)
        if handler:
            handler()

    def fill(self, selector: str, text: str) -> None:
        self.calls.append(("fill", selector, text))

    def evaluate(self, expression: str, arg=None):
        self.calls.append(("evaluate", expression))
        return None

    def wait_for_timeout(self, ms: int) -> None:
        self.waits.append(ms)

    def wait_for_selector(self, selector: str, state=None, timeout=None):
        self.calls.append(("wait_for_selector", selector))
        found = self.elements.get(selector) or []
        if not found:
            raise PWTimeoutError(f"Timeout waiting for {selector}")
        return found[0]

    def called(self, method: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == method]


@pytest.fixture
def fake_page() -> FakePage:
    return FakePage()


@pytest.fixture
def config(tmp_path: Path) -> ScraperConfig:
    cfg = ScraperConfig(output_dir=tmp_path / "output")
    cfg.filters = FilterSpec(sets=["Opus I"])
    cfg.delay_between_cards_ms = 0
    cfg.delay_between_pages_ms = 0
    cfg.delay_between_sets_ms = 0
    return cfg
