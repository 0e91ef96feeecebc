"""Research assistant: browses the web with page tools to answer a topic."""

import logging
from contextlib import ExitStack
from typing import Any

from inkwell.agent.base import ActionSpec, Agent, PromptInput, is_present
from inkwell.agent.browser import PageError, PageSession

logger = logging.getLogger(__name__)

INSPECTED_ELEMENTS = ("form", "input", "button", "a", "img")


class ResearchAssistantAgent(Agent):
    """Researches a topic with a pooled page session.

    Page-level problems (no page loaded, element not found) are returned to
    the model as ``{"success": False, "error": ...}`` so it can recover;
    network failures raise and fail the action.
    """

    slug = "research_assistant"
    agent_name = "ResearchAssistantAgent"
    instructions = (
        "You are a research assistant helping authors gather accurate, well-sourced information "
        "for their books. Use the browsing tools to find and read relevant pages, then write a "
        "concise research summary in Markdown that cites the URLs you used."
    )
    actions = {
        "research": ActionSpec("research", required=("topic",), defaults={"depth": "standard"}),
    }
    tool_names = (
        "navigate",
        "click",
        "fill_form",
        "extract_text",
        "extract_main_content",
        "extract_links",
        "page_info",
        "go_back",
    )

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.session: PageSession | None = None
        self._resources = ExitStack()

    def __enter__(self) -> "ResearchAssistantAgent":
        pool = self.dependencies.browser_pool
        if pool is None:
            raise RuntimeError("ResearchAssistantAgent requires a browser pool")
        self.session = self._resources.enter_context(pool.acquire())
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.session is not None and self.tools.abandoned:
            self.dependencies.browser_pool.defer_release(self.session, self.tools.abandoned)
        self.session = None
        self._resources.close()

    def context_options(self) -> dict[str, Any]:
        return {
            "input_params": {
                "topic": self.params["topic"],
                "depth": self.params["depth"],
                "has_full_content": is_present(self.params.get("full_content")),
            }
        }

    def build_prompt(self) -> PromptInput:
        params = self.params
        lines = [
            f"Research the following topic: {params['topic']}",
            f"Research depth: {params['depth']}.",
        ]
        if is_present(params.get("context")):
            lines.append(f"Context: {params['context']}")
        if is_present(params.get("full_content")):
            lines += ["", "The author's current document:", '"""', params["full_content"], '"""']
        lines += [
            "",
            "Start by navigating to a relevant source (for example https://en.wikipedia.org). "
            "Read the main content of the pages you visit and follow links where useful.",
        ]
        return PromptInput("\n".join(lines))

    def describe_tool(self, name: str, arguments: dict[str, Any]) -> str:
        if name == "navigate":
            return f"Visiting {arguments.get('url')}"
        if name == "click":
            return f"Clicking {arguments.get('text') or arguments.get('selector')}"
        if name == "fill_form":
            return f"Filling in {arguments.get('field')}"
        if name in ("extract_text", "extract_main_content"):
            return "Reading page content"
        if name == "extract_links":
            return "Collecting links"
        if name == "go_back":
            return "Going back"
        return super().describe_tool(name, arguments)

    # -- tools ----------------------------------------------------------

    @property
    def page(self) -> PageSession:
        if self.session is None:
            raise PageError("No browser session is open")
        return self.session

    def _location(self) -> dict[str, Any]:
        return {"success": True, "current_url": self.page.current_url, "title": self.page.title}

    def navigate(self, url: str) -> dict[str, Any]:
        try:
            self.page.visit(url)
        except PageError as e:
            logger.warning(f"[ResearchAgent] Navigate error: {e}")
            return {"success": False, "error": str(e)}
        return self._location()

    def click(self, selector: str | None = None, text: str | None = None) -> dict[str, Any]:
        if not text and not selector:
            return {"success": False, "error": "Must provide either selector or text"}
        try:
            self.page.click(text=text, selector=None if text else selector)
        except PageError as e:
            logger.warning(f"[ResearchAgent] Click error: {e}")
            return {"success": False, "error": str(e)}
        return self._location()

    def fill_form(self, field: str, value: str) -> dict[str, Any]:
        try:
            self.page.fill_in(field, value)
        except PageError as e:
            logger.warning(f"[ResearchAgent] Fill form error: {e}")
            return {"success": False, "error": str(e)}
        return {"success": True}

    def extract_text(self, selector: str = "body") -> dict[str, Any]:
        try:
            text = self.page.text(selector)
        except PageError as e:
            logger.warning(f"[ResearchAgent] Extract text error: {e}")
            return {"success": False, "error": str(e), "text": ""}
        return {"success": True, "text": text, "current_url": self.page.current_url}

    def extract_main_content(self) -> dict[str, Any]:
        try:
            content, selector_used = self.page.main_content()
        except PageError as e:
            logger.warning(f"[ResearchAgent] Extract main content error: {e}")
            return {"success": False, "error": str(e), "content": ""}
        return {
            "success": True,
            "content": content,
            "selector_used": selector_used,
            "current_url": self.page.current_url,
            "title": self.page.title,
        }

    def extract_links(self, selector: str = "body", limit: int = 10) -> dict[str, Any]:
        try:
            links = self.page.links(selector, limit=int(limit))
        except PageError as e:
            logger.warning(f"[ResearchAgent] Extract links error: {e}")
            return {"success": False, "error": str(e), "links": []}
        return {"success": True, "links": links, "current_url": self.page.current_url}

    def page_info(self) -> dict[str, Any]:
        try:
            has_elements = {tag: self.page.has_css(tag) for tag in INSPECTED_ELEMENTS}
        except PageError as e:
            logger.warning(f"[ResearchAgent] Page info error: {e}")
            return {"success": False, "error": str(e)}
        return {**self._location(), "has_elements": has_elements}

    def go_back(self) -> dict[str, Any]:
        try:
            self.page.go_back()
        except PageError as e:
            logger.warning(f"[ResearchAgent] Go back error: {e}")
            return {"success": False, "error": str(e)}
        return self._location()
