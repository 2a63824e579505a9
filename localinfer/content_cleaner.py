import re
from typing import Optional


_THINK_RE = re.compile(r"<think>[\s\S]*?</think>")
ANTI_PROMPTS = ("User:", "User:\n", "\n\n\n", "###")


def clean(raw: Optional[str]) -> str:
    """Strip reasoning spans, response tags and one trailing anti-prompt from model output."""
    if not raw:
        return ""
    cleaned = _THINK_RE.sub("", raw)
    cleaned = cleaned.replace("<response>", "").replace("</response>", "")
    cleaned = cleaned.rstrip()
    for anti_prompt in ANTI_PROMPTS:
        marker = anti_prompt.strip()
        if marker and cleaned.endswith(marker):
            return cleaned[: -len(marker)].rstrip()
    return cleaned
