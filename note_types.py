"""
Note kinds for Marginalia.
A note is one of four closed types; the type carries no behavior of its own
beyond the glyph used in exports and the heuristics used to guess it from text.
"""

import re
from typing import Literal, Tuple

NoteType = Literal["quote", "idea", "question", "action"]
MediaType = Literal["text", "image", "audio"]
BookFormat = Literal["physical", "ebook", "audiobook"]

NOTE_TYPES: Tuple[str, ...] = ("quote", "idea", "question", "action")
MEDIA_TYPES: Tuple[str, ...] = ("text", "image", "audio")
BOOK_FORMATS: Tuple[str, ...] = ("physical", "ebook", "audiobook")

TYPE_GLYPHS = {
    "quote": "💬",
    "idea": "💡",
    "question": "❓",
    "action": "✅",
}

_QUESTION_PATTERNS = [
    re.compile(r"\?$"),
    re.compile(r"^(why|how|what|when|where|who|which|is|are|can|could|would|should|do|does|did)\b", re.I),
    re.compile(r"^i('m| am)?\s*(wondering|curious|unsure|not sure)", re.I),
]

_ACTION_PATTERNS = [
    re.compile(r"^(todo|to-do|to do)[:.\s]", re.I),
    re.compile(r"^\s*[-•✓☐□]\s"),
    re.compile(r"^(remember to|don't forget|need to|must|should|will|going to)\b", re.I),
    re.compile(r"^(try|test|implement|create|build|make|write|read|research|look up|find|check|review)\b", re.I),
    re.compile(r"^(action|next step|follow up|task)[:.\s]", re.I),
]

_QUOTE_PATTERNS = [
    re.compile(r"^[\"'“”‘’].*[\"'“”‘’]$", re.S),
    re.compile(r"^[\"'“”‘’]"),
    re.compile(r"\"[^\"]{20,}\""),
]

_FIRST_PERSON_MARKERS = ("i think", "my thought", "i wonder")


def is_valid_note_type(value: str) -> bool:
    return value in NOTE_TYPES


def type_label(note_type: str) -> str:
    """Heading label for a note type, e.g. 'quote' -> 'Quote'."""
    return note_type[:1].upper() + note_type[1:]


def infer_note_type(content: str) -> str:
    """
    Guess a note's type from its text.

    Checked in order: question, action, quote. Anything else is an idea.
    A long, capitalized, punctuated sentence without first-person
    markers is treated as an excerpt, i.e. a quote.
    """
    trimmed = content.strip()
    if not trimmed:
        return "idea"
    lower = trimmed.lower()

    if any(p.search(trimmed) for p in _QUESTION_PATTERNS):
        return "question"

    if any(p.search(trimmed) for p in _ACTION_PATTERNS):
        return "action"

    is_long_excerpt = (
        len(trimmed) > 100
        and not any(marker in lower for marker in _FIRST_PERSON_MARKERS)
        and trimmed[0].isupper()
        and trimmed[-1] in ".!?"
    )
    if is_long_excerpt or any(p.search(trimmed) for p in _QUOTE_PATTERNS):
        return "quote"

    return "idea"
