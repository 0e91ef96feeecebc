"""Writing assistant: improve, correct, restyle, summarize, expand, brainstorm."""

from inkwell.agent.base import ActionSpec, Agent, PromptInput, is_present

CONTENT_INPUTS = ("content", "selection")

TASKS = {
    "improve": "improve the writing quality, clarity, and engagement",
    "grammar": "check and correct grammar, punctuation, and spelling",
    "style": "adjust the writing style and tone",
    "summarize": "create a concise summary",
    "expand": "expand and elaborate on the content",
    "brainstorm": "generate creative ideas and suggestions",
}


class WritingAssistantAgent(Agent):
    slug = "writing_assistant"
    agent_name = "WritingAssistantAgent"
    instructions = "You are an expert writing assistant helping authors create and improve their content for books."
    actions = {
        "improve": ActionSpec("improve", any_of=CONTENT_INPUTS),
        "grammar": ActionSpec("grammar", any_of=CONTENT_INPUTS),
        "style": ActionSpec("style", any_of=CONTENT_INPUTS),
        "summarize": ActionSpec("summarize", any_of=CONTENT_INPUTS, defaults={"max_words": 150}),
        "expand": ActionSpec("expand", any_of=CONTENT_INPUTS),
        "brainstorm": ActionSpec("brainstorm", required=("topic",), defaults={"number_of_ideas": 5}),
    }

    def build_prompt(self) -> PromptInput:
        if self.action == "brainstorm":
            return PromptInput(self._brainstorm_prompt())
        return PromptInput(self._content_prompt())

    def _content_prompt(self) -> str:
        params = self.params
        has_selection = is_present(params.get("selection"))
        lines = [f"Please {TASKS[self.action]}."]

        if self.action == "style" and is_present(params.get("style_guide")):
            lines.append(f"Follow this style guide: {params['style_guide']}")
        if self.action == "summarize":
            lines.append(f"Keep the summary under {params['max_words']} words.")
        if self.action == "expand":
            if is_present(params.get("target_length")):
                lines.append(f"Target length: {params['target_length']}.")
            if is_present(params.get("areas_to_expand")):
                lines.append(f"Focus on: {params['areas_to_expand']}.")
        if is_present(params.get("context")):
            lines.append(f"Context: {params['context']}")

        if has_selection:
            lines.append("Work only on the selected passage below; the full document is provided for reference.")
            if is_present(params.get("full_content")):
                lines += ["", "Full document:", '"""', params["full_content"], '"""']
            lines += ["", "Selected passage:", '"""', params["selection"], '"""']
        else:
            lines += ["", "Text:", '"""', params["content"], '"""']

        lines += ["", "Respond with the result only, formatted as Markdown, without commentary."]
        return "\n".join(lines)

    def _brainstorm_prompt(self) -> str:
        params = self.params
        lines = [
            f"Please {TASKS['brainstorm']} about: {params['topic']}",
            f"Provide {params['number_of_ideas']} distinct ideas as a Markdown list.",
        ]
        if is_present(params.get("context")):
            lines.append(f"Context: {params['context']}")
        if is_present(params.get("full_content")):
            lines += ["", "Existing document:", '"""', params["full_content"], '"""']
        return "\n".join(lines)
