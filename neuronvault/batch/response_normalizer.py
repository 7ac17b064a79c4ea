"""
Clean up a model's answer before it takes part in synthesis.

Passes, in order:
1. Strip a trailing bracketed reference footer, e.g. "[Sources: ...]".
2. Strip leading "Note:", "Disclaimer:" and "Important:" lines.
3. Collapse 3 or more consecutive newlines into a single blank line.
4. A formatting pass for the model family. Claude models get their lead-in
   phrase emphasized ("Here's the plan:" becomes "**Here's the plan:**"),
   DeepSeek models get the text of numbered items emphasized. Other families
   are left alone.
5. Markdown tidy: exactly one space after heading markers and list bullets.

PROMPT> python -m neuronvault.batch.response_normalizer
"""

from __future__ import annotations

import logging
import re
from enum import Enum

logger = logging.getLogger(__name__)

_REFERENCE_FOOTER = re.compile(r"\n\s*\[[^\[\]\n]*\]\s*\Z")
_DISCLAIMER_LINE = re.compile(r"^\s*(?:Note|Disclaimer|Important):[^\n]*(?:\n|\Z)")
_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")
_CLAUDE_LEAD_IN = re.compile(r"(Here's|Let me|I'll|I can|I think|I believe)([^:\n]*:)")
_DEEPSEEK_NUMBERED_ITEM = re.compile(r"^(\d+\.\s+)(.+)$", re.MULTILINE)
_HEADING = re.compile(r"^(#{1,6})[ \t]*([^#\s].*)$", re.MULTILINE)
_BULLET = re.compile(r"^([ \t]*[-*+])[ \t]+(\S.*)$", re.MULTILINE)


class ModelFamily(str, Enum):
    anthropic = "anthropic"
    deepseek = "deepseek"
    openai = "openai"
    unknown = "unknown"

    @classmethod
    def from_model_id(cls, model_id: str) -> "ModelFamily":
        lowered = (model_id or "").lower()
        if "claude" in lowered or "anthropic" in lowered:
            return cls.anthropic
        if "deepseek" in lowered:
            return cls.deepseek
        if "gpt" in lowered or "openai" in lowered:
            return cls.openai
        return cls.unknown


class ResponseNormalizer:
    def normalize(self, text: str, model_id: str) -> str:
        if not text:
            return ""
        result = self.strip_boilerplate(text)
        result = self.apply_family_formatting(result, ModelFamily.from_model_id(model_id))
        result = self.tidy_markdown(result)
        return result.strip()

    def strip_boilerplate(self, text: str) -> str:
        result = _REFERENCE_FOOTER.sub("", text)
        result = result.lstrip("\n")
        while True:
            match = _DISCLAIMER_LINE.match(result)
            if match is None:
                break
            result = result[match.end():].lstrip("\n")
        return _EXCESS_BLANK_LINES.sub("\n\n", result)

    def apply_family_formatting(self, text: str, family: ModelFamily) -> str:
        if family == ModelFamily.anthropic:
            return _CLAUDE_LEAD_IN.sub(r"**\1\2**", text)
        if family == ModelFamily.deepseek:
            return _DEEPSEEK_NUMBERED_ITEM.sub(r"\1**\2**", text)
        return text

    def tidy_markdown(self, text: str) -> str:
        result = _HEADING.sub(r"\1 \2", text)
        return _BULLET.sub(r"\1 \2", result)


if __name__ == "__main__":
    normalizer = ResponseNormalizer()
    sample = (
        "Note: this is general guidance.\n"
        "Here's the short version: use a queue.\n\n\n\n"
        "#Details\n"
        "-   keep it bounded\n"
        "\n[Sources: internal notes]"
    )
    for model_id in ["claude-3-opus", "deepseek-chat", "gpt-4o"]:
        print(f"--- {model_id} ---")
        print(normalizer.normalize(sample, model_id))
