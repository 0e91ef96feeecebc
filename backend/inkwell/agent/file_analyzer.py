"""File analyzer: image captions and text extraction from uploaded files."""

import base64
import mimetypes
from pathlib import Path
from typing import Any

from inkwell.agent.base import ActionSpec, Agent, PromptInput
from inkwell.core.errors import InvalidParametersError

MAX_DOCUMENT_CHARS = 100_000

DETAIL_LEVELS = {
    "brief": "Write a single-sentence caption.",
    "medium": "Write a caption of two or three sentences describing the main subject and setting.",
    "detailed": "Write a detailed description covering subjects, setting, composition, colors and any visible text.",
}


class FileAnalyzerAgent(Agent):
    slug = "file_analyzer"
    agent_name = "FileAnalyzerAgent"
    instructions = (
        "You are an expert document analyzer capable of extracting insights from PDFs, images, "
        "and other file types."
    )
    actions = {
        "analyze_image": ActionSpec("analyze_image", required=("file_path",), defaults={"description_detail": "medium"}),
        "extract_text": ActionSpec("extract_text", required=("file_path",)),
        "summarize_document": ActionSpec("summarize_document", required=("file_path",)),
    }

    @classmethod
    def validate_inputs(cls, action: str, params: dict[str, Any]) -> None:
        path = Path(params["file_path"])
        if not path.is_file():
            raise InvalidParametersError(f"File not found: {path.name}")
        media_type = params.get("media_type") or media_type_for(path)
        if action == "analyze_image" and not media_type.startswith("image/"):
            raise InvalidParametersError(f"{path.name} is not an image")

    def build_prompt(self) -> PromptInput:
        path = Path(self.params["file_path"])
        if self.action == "analyze_image":
            return self._image_prompt(path)
        return PromptInput(self._document_prompt(path))

    def _image_prompt(self, path: Path) -> PromptInput:
        detail = self.params["description_detail"]
        instruction = DETAIL_LEVELS.get(detail, DETAIL_LEVELS["medium"])
        part = {
            "type": "image",
            "media_type": self.params.get("media_type") or media_type_for(path),
            "data": base64.b64encode(path.read_bytes()).decode("ascii"),
        }
        return PromptInput(f"Describe this image for use as a figure caption. {instruction}", [part])

    def _document_prompt(self, path: Path) -> str:
        try:
            content = path.read_text(encoding="utf-8", errors="replace")[:MAX_DOCUMENT_CHARS]
        except OSError as e:
            raise InvalidParametersError(f"Unable to read file content: {e}") from e

        if self.action == "extract_text":
            task = "Extract the meaningful text from this document and return it as clean Markdown."
        else:
            task = "Summarize this document: its purpose, key points and any conclusions."
        return "\n".join([task, "", f"File: {path.name}", '"""', content, '"""'])


def media_type_for(path: Path) -> str:
    media_type, _ = mimetypes.guess_type(path.name)
    return media_type or "application/octet-stream"
