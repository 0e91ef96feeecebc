"""Lightweight page sessions for the research tools.

A ``PageSession`` drives plain HTTP page loads (httpx) and HTML inspection
(BeautifulSoup): visiting URLs, following links, filling and submitting
forms, and pulling readable text out of a page. Sessions are handed out by a
bounded ``BrowserSessionPool`` so each research invocation owns its session
for its whole lifetime.
"""

from __future__ import annotations

import logging
import queue
import re
import threading
from concurrent.futures import Future
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup, Tag

from inkwell.core.errors import BrowserPoolExhaustedError

logger = logging.getLogger(__name__)

# Tried in order when looking for the main readable content of a page
MAIN_CONTENT_SELECTORS = (
    "#mw-content-text",  # Wikipedia
    "main",
    "article",
    "[role='main']",
    ".content",
    "#content",
    ".article-body",
    ".post-content",
)

_WHITESPACE = re.compile(r"\s+")


class PageError(Exception):
    """A page-level problem (nothing loaded, element missing)."""


class ElementNotFoundError(PageError):
    pass


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


class PageSession:
    """A single browsing session with history and pending form values."""

    def __init__(self, client: httpx.Client, max_text_chars: int = 6000):
        self.client = client
        self.max_text_chars = max_text_chars
        self.status_code: Optional[int] = None
        self._url: Optional[str] = None
        self._soup: Optional[BeautifulSoup] = None
        self._history: list[str] = []
        self._form_values: dict[str, str] = {}

    # -- navigation -----------------------------------------------------

    def visit(self, url: str) -> None:
        if self._url:
            self._history.append(self._url)
        self._load(self.client.get(self._absolute(url)))

    def go_back(self) -> None:
        if not self._history:
            raise PageError("No previous page in history")
        self._load(self.client.get(self._history.pop()))

    def _load(self, response: httpx.Response) -> None:
        self.status_code = response.status_code
        self._url = str(response.url)
        self._soup = BeautifulSoup(response.text, "html.parser")
        self._form_values = {}
        logger.info(f"🌐 Loaded {self._url} ({response.status_code})")

    def _absolute(self, url: str) -> str:
        return urljoin(self._url, url) if self._url else url

    @property
    def page(self) -> BeautifulSoup:
        if self._soup is None:
            raise PageError("No page loaded. Call navigate first.")
        return self._soup

    @property
    def current_url(self) -> Optional[str]:
        return self._url

    @property
    def title(self) -> str:
        if self._soup is None or self._soup.title is None or self._soup.title.string is None:
            return ""
        return self._soup.title.string.strip()

    # -- inspection -----------------------------------------------------

    def has_css(self, selector: str) -> bool:
        return self.page.select_one(selector) is not None

    def find(self, selector: str) -> Tag:
        element = self.page.select_one(selector)
        if element is None:
            raise ElementNotFoundError(f"Unable to find css {selector!r}")
        return element

    def _cap(self, text: str) -> str:
        return text[: self.max_text_chars]

    def text(self, selector: str = "body") -> str:
        return self._cap(collapse_whitespace(self.find(selector).get_text(" ")))

    def main_content(self) -> tuple[str, Optional[str]]:
        """Readable text of the main content area and the selector that matched."""
        for selector in MAIN_CONTENT_SELECTORS:
            element = self.page.select_one(selector)
            if element is None:
                continue
            text = collapse_whitespace(element.get_text(" "))
            if text:
                return self._cap(text), selector
        body = self.page.body or self.page
        return self._cap(collapse_whitespace(body.get_text(" "))), None

    def links(self, selector: str = "body", limit: int = 10) -> list[dict[str, Any]]:
        scope = self.page if selector == "body" else self.find(selector)
        links = []
        for anchor in scope.find_all("a"):
            href = anchor.get("href")
            if not href or href.startswith("#") or href.startswith("javascript:"):
                continue
            links.append({
                "text": collapse_whitespace(anchor.get_text(" ")),
                "href": self._absolute(href),
                "title": anchor.get("title"),
            })
            if len(links) >= limit:
                break
        return links

    # -- interaction ----------------------------------------------------

    def click(self, text: Optional[str] = None, selector: Optional[str] = None) -> None:
        """Follow a link, or submit the form a button belongs to."""
        element = self.find(selector) if selector else self._find_clickable(text or "")

        if element.name == "a":
            href = element.get("href")
            if not href:
                raise PageError("Link has no href")
            self.visit(href)
            return

        form = element.find_parent("form")
        if form is None:
            raise PageError(f"Element <{element.name}> is not a link or a form button")
        self._submit(form)

    def _find_clickable(self, text: str) -> Tag:
        wanted = collapse_whitespace(text).lower()
        for element in self.page.find_all(["a", "button", "input"]):
            if element.name == "input" and element.get("type") not in ("submit", "button"):
                continue
            label = element.get("value") if element.name == "input" else element.get_text(" ")
            label = collapse_whitespace(label or "").lower()
            if label == wanted or (wanted and wanted in label):
                return element
        raise ElementNotFoundError(f"Unable to find link or button {text!r}")

    def fill_in(self, field: str, value: str) -> None:
        element = self._find_field(field)
        self._form_values[element.get("name") or field] = value

    def _find_field(self, field: str) -> Tag:
        page = self.page
        element = page.find(["input", "textarea", "select"], attrs={"name": field})
        if element is None:
            element = page.find(["input", "textarea", "select"], attrs={"id": field})
        if element is None:
            label = page.find("label", string=lambda s: s and collapse_whitespace(s).lower() == field.lower())
            if label is not None and label.get("for"):
                element = page.find(id=label["for"])
        if element is None:
            raise ElementNotFoundError(f"Unable to find field {field!r}")
        return element

    def _submit(self, form: Tag) -> None:
        data: dict[str, str] = {}
        for element in form.find_all(["input", "textarea", "select"]):
            name = element.get("name")
            if name and element.get("type") not in ("submit", "button"):
                data[name] = element.get("value", "")
        data.update(self._form_values)

        action = self._absolute(form.get("action") or self._url or "")
        if self._url:
            self._history.append(self._url)
        if (form.get("method") or "get").lower() == "post":
            self._load(self.client.post(action, data=data))
        else:
            self._load(self.client.get(action, params=data))

    def reset(self) -> None:
        self.status_code = None
        self._url = None
        self._soup = None
        self._history.clear()
        self._form_values.clear()

    def close(self) -> None:
        self.client.close()


def default_session_factory(
    user_agent: str = "inkwell-research/0.1",
    timeout: float = 30.0,
    max_text_chars: int = 6000,
) -> Callable[[], PageSession]:
    def build() -> PageSession:
        client = httpx.Client(
            timeout=timeout,
            headers={"User-Agent": user_agent},
            follow_redirects=True,
        )
        return PageSession(client, max_text_chars=max_text_chars)

    return build


class BrowserSessionPool:
    """Bounded pool of page sessions, created lazily.

    ``acquire`` hands a session to exactly one caller until it is released;
    sessions are reset on release so no page state leaks between research
    invocations. A holder whose calls were abandoned mid-flight marks them
    with ``defer_release`` and the session only returns once they finish.
    """

    def __init__(
        self,
        size: int,
        factory: Callable[[], PageSession],
        acquire_timeout: float = 30.0,
    ):
        if size < 1:
            raise ValueError("Browser pool size must be at least 1")
        self.size = size
        self.factory = factory
        self.acquire_timeout = acquire_timeout
        self._idle: queue.LifoQueue[PageSession] = queue.LifoQueue()
        self._created: list[PageSession] = []
        self._lock = threading.Lock()
        self._deferred: dict[int, list[Future]] = {}

    def _checkout(self, timeout: float) -> PageSession:
        try:
            return self._idle.get_nowait()
        except queue.Empty:
            pass

        with self._lock:
            if len(self._created) < self.size:
                session = self.factory()
                self._created.append(session)
                return session

        try:
            return self._idle.get(timeout=timeout)
        except queue.Empty:
            raise BrowserPoolExhaustedError(
                f"No browser session available after {timeout:g}s (pool size {self.size})"
            ) from None

    @contextmanager
    def acquire(self, timeout: Optional[float] = None) -> Iterator[PageSession]:
        session = self._checkout(self.acquire_timeout if timeout is None else timeout)
        try:
            yield session
        finally:
            with self._lock:
                pending = self._deferred.pop(id(session), [])
            self._release_after(session, pending)

    def defer_release(self, session: PageSession, futures: list[Future]) -> None:
        """Keep ``session`` out of the pool until every future has finished."""
        with self._lock:
            self._deferred.setdefault(id(session), []).extend(futures)

    def _release_after(self, session: PageSession, pending: list[Future]) -> None:
        running = [future for future in pending if not future.done()]
        if not running:
            session.reset()
            self._idle.put(session)
            return
        logger.warning(f"⏳ Holding a browser session until {len(running)} abandoned call(s) finish")
        running[0].add_done_callback(lambda _: self._release_after(session, running[1:]))

    @property
    def created(self) -> int:
        with self._lock:
            return len(self._created)

    def close(self) -> None:
        with self._lock:
            for session in self._created:
                session.close()
            self._created.clear()
