"""Answer prompt template.

The template text lives in ``docrag/prompts/answer.txt`` so it can be
edited, versioned or swapped (``PROMPT_TEMPLATE_PATH``) without touching
pipeline code. It must use exactly the ``{context}`` and ``{question}``
fields.
"""
import string
from pathlib import Path
from typing import Optional

from docrag import config
from docrag.errors import ValidationError

REQUIRED_FIELDS = frozenset({"context", "question"})


class PromptTemplate:
    """A validated ``str.format`` template with context and question fields."""

    def __init__(self, template: str):
        try:
            fields = {
                name
                for _, name, _, _ in string.Formatter().parse(template)
                if name is not None
            }
        except ValueError as e:
            raise ValidationError(f"Malformed prompt template: {e}") from e

        if fields != REQUIRED_FIELDS:
            raise ValidationError(
                f"Prompt template must use exactly {sorted(REQUIRED_FIELDS)} fields, "
                f"found {sorted(fields)}"
            )
        self.template = template

    @classmethod
    def from_file(cls, path: Optional[Path] = None) -> "PromptTemplate":
        path = Path(path or config.PROMPT_TEMPLATE_PATH)
        return cls(path.read_text(encoding="utf-8"))

    def render(self, context: str, question: str) -> str:
        return self.template.format(context=context, question=question)
