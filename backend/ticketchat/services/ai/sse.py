"""
Server-sent event framing shared by every streamed response.

Clients receive one format regardless of vendor:

    data: {"choices":[{"delta":{"content":"<text>"}}]}\n\n
    ...
    data: [DONE]\n\n
"""
import json
import re
from typing import Any, Dict, Iterator

DONE_FRAME = "data: [DONE]\n\n"

_CHUNK_PATTERN = re.compile(r"\S+\s*|\s+")


def format_event_frame(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def format_delta_frame(text: str) -> str:
    return format_event_frame({"choices": [{"delta": {"content": text}}]})


def text_to_frames(text: str, words_per_frame: int = 8) -> Iterator[str]:
    """
    Re-frame an already complete answer as delta frames, followed by DONE.

    Whitespace is preserved so that concatenating the deltas reproduces
    ``text`` exactly (markdown tables depend on it).
    """
    tokens = _CHUNK_PATTERN.findall(text or "")
    for start in range(0, len(tokens), words_per_frame):
        yield format_delta_frame("".join(tokens[start:start + words_per_frame]))
    yield DONE_FRAME
