"""
AI Service for Marginalia.
Note text actions (cleanup, expand, summarize, flashcard) and image-to-text
extraction, using one of two providers:
- Google Gemini (cloud)
- Ollama (local)
"""

import base64
import json
import os
import re
from dataclasses import dataclass
from typing import List, Literal, Optional, Union

import httpx

from user_data import Book, Flashcard, Note

AIAction = Literal["cleanup", "expand", "summarize", "flashcard"]
AI_ACTIONS = ("cleanup", "expand", "summarize", "flashcard")

DEFAULT_OCR_PROMPT = "Extract text from this image."
ACTION_TEMPERATURE = 0.4
OCR_TEMPERATURE = 0.1

_SHARED_RULES = [
    "Use book context only to disambiguate terms; do not add new claims or facts.",
    "No hallucinations: avoid names, frameworks, or details not implied by the note/highlight/context.",
    "If the note is ambiguous, choose the most likely interpretation and add a single line: Assumption: ...",
    "Keep it concise and practical; no motivational filler.",
]

_ACTION_PROMPTS = {
    "cleanup": (
        ["You clean up short notes for readability."],
        [
            "Make the note directly usable later; avoid vague references like \"this/that\" when a concept can be named.",
            "Output only the cleaned note, plus an optional Assumption line.",
        ],
    ),
    "expand": (
        ["You expand a short note into a fuller explanation."],
        [
            "Make the note directly usable later; avoid vague references like \"this/that\" when a concept can be named.",
            "Output 2-4 short sentences OR at most 2 bullets. Output only the expanded note, plus an optional Assumption line.",
        ],
    ),
    "summarize": (
        ["You summarize notes into a concise, clear single-paragraph summary."],
        [
            "Make the note directly usable later; avoid vague references like \"this/that\" when a concept can be named.",
            "Output 2-4 sentences max, one paragraph.",
        ],
    ),
    "flashcard": (
        ["You turn a note into a simple Q&A flashcard."],
        [
            "Make the card directly usable later; avoid vague references like \"this/that\" when a concept can be named.",
            "Output exactly one card in this format:",
            "Q: ...",
            "A: ...",
            "(Assumption: ... optional)",
        ],
    ),
}

_QUESTION_PREFIX = re.compile(r"^q(uestion)?:", re.I)
_ANSWER_PREFIX = re.compile(r"^a(nswer)?:", re.I)


class AIServiceError(Exception):
    """Raised when a provider call fails or is misconfigured."""


@dataclass
class AIConfig:
    """Configuration for AI service."""
    provider: Literal["gemini", "ollama"] = "gemini"
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.2-vision"
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"


@dataclass
class NoteContext:
    """Book metadata sent along with a note to ground the AI's answer."""
    book_title: Optional[str] = None
    book_author: Optional[str] = None
    chapter_or_section: Optional[str] = None
    page: Optional[str] = None
    highlight: Optional[str] = None

    @classmethod
    def from_note(cls, note: Note, book: Optional[Book] = None) -> "NoteContext":
        return cls(
            book_title=book.title if book else None,
            book_author=book.author if book else None,
            chapter_or_section=note.chapter,
            page=note.location,
            highlight=note.extracted_text,
        )


@dataclass
class AIResult:
    """Output of an AI action: rewritten text, or a flashcard."""
    text: str = ""
    flashcard: Optional[Flashcard] = None


def build_system_prompt(action: str) -> str:
    if action not in _ACTION_PROMPTS:
        raise ValueError(f"Unknown AI action: {action}")
    intro, outro = _ACTION_PROMPTS[action]
    return " ".join(intro + _SHARED_RULES + outro)


def build_user_content(text: str, context: Union[NoteContext, str, None] = None) -> str:
    """Lay out the note and whatever context is known as a 'Context:' block."""
    lines = ["Context:"]
    if isinstance(context, NoteContext):
        if context.book_title:
            lines.append(f"Book Title: {context.book_title}")
        if context.book_author:
            lines.append(f"Book Author: {context.book_author}")
        if context.chapter_or_section:
            lines.append(f"Chapter/Section: {context.chapter_or_section}")
        if context.page:
            lines.append(f"Page: {context.page}")
        if context.highlight:
            lines.append(f"Highlight: {context.highlight}")
    elif context:
        lines.append(f"Additional Context: {context}")
    lines.append(f"Note Text: {text}")
    return "\n".join(lines)


def parse_flashcard(content: str) -> Flashcard:
    """
    Pull a question and answer out of a model reply.

    Prefers explicit "Q:" / "A:" lines; otherwise the first line is the
    question and the rest is the answer.
    """
    lines = [line.strip() for line in content.split("\n") if line.strip()]
    question = ""
    answer = ""
    for line in lines:
        if not question and _QUESTION_PREFIX.match(line):
            question = _QUESTION_PREFIX.sub("", line).strip()
            continue
        if not answer and _ANSWER_PREFIX.match(line):
            answer = _ANSWER_PREFIX.sub("", line).strip()
            continue

    if not question and lines:
        question = lines[0]
    if not answer and len(lines) > 1:
        answer = " ".join(lines[1:])

    return Flashcard(question=question or "Question unavailable", answer=answer or content)


class AIService:
    """
    Client for the AI text actions and OCR.
    Reuses a persistent httpx.AsyncClient for connection pooling.

    Usage:
        ai = AIService()
        result = await ai.run_action("summarize", note.content, NoteContext.from_note(note, book))
        text = await ai.extract_text(image_bytes, "image/jpeg")
    """

    def __init__(self, config: Optional[AIConfig] = None):
        self.config = config or self._load_config()
        self._client: Optional[httpx.AsyncClient] = None

    @staticmethod
    def _config_path() -> str:
        return os.path.join(os.path.dirname(__file__), "ai_config.json")

    def _load_config(self) -> AIConfig:
        """Load config from file or environment."""
        config_path = self._config_path()

        if os.path.exists(config_path):
            try:
                with open(config_path, "r") as f:
                    data = json.load(f)
                return AIConfig(
                    provider=data.get("provider", "gemini"),
                    ollama_base_url=data.get("ollama", {}).get("base_url", "http://localhost:11434"),
                    ollama_model=data.get("ollama", {}).get("model", "llama3.2-vision"),
                    gemini_api_key=data.get("gemini", {}).get("api_key", "") or os.environ.get("GEMINI_API_KEY", ""),
                    gemini_model=data.get("gemini", {}).get("model", "gemini-2.5-flash"),
                )
            except (OSError, ValueError, AttributeError) as e:
                print(f"Error loading AI config: {e}")

        return AIConfig(
            gemini_api_key=os.environ.get("GEMINI_API_KEY", ""),
            gemini_model=os.environ.get("GEMINI_MODEL", "gemini-2.5-flash"),
        )

    def save_config(self) -> None:
        """Save current config to file."""
        data = {
            "provider": self.config.provider,
            "ollama": {
                "base_url": self.config.ollama_base_url,
                "model": self.config.ollama_model,
            },
            "gemini": {
                "api_key": self.config.gemini_api_key,
                "model": self.config.gemini_model,
            },
        }
        with open(self._config_path(), "w") as f:
            json.dump(data, f, indent=2)

    async def _get_client(self) -> httpx.AsyncClient:
        """Return a persistent httpx client (connection pooling)."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=120.0)
        return self._client

    async def close(self):
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def run_action(self, action: AIAction, text: str,
                         context: Union[NoteContext, str, None] = None) -> AIResult:
        """
        Run one AI action over a note's text.

        Args:
            action: cleanup, expand, summarize or flashcard
            text: The note text
            context: Book/location context, or free-form extra context

        Returns:
            AIResult with text set, or flashcard set for "flashcard"
        """
        if action not in AI_ACTIONS:
            raise ValueError(f"Unknown AI action: {action}")
        if not text or not text.strip():
            raise ValueError("Missing text")

        content = await self._generate(
            build_system_prompt(action),
            build_user_content(text, context),
            temperature=ACTION_TEMPERATURE,
        )
        if action == "flashcard":
            return AIResult(text=content, flashcard=parse_flashcard(content))
        return AIResult(text=content)

    async def extract_text(self, image_bytes: bytes, mime_type: str = "image/png",
                           prompt: Optional[str] = None) -> str:
        """Extract text from an image. Returns "" when nothing is recognized."""
        if not image_bytes:
            raise ValueError("Missing image data")
        image_b64 = base64.b64encode(image_bytes).decode("ascii")
        return await self._generate(
            None,
            prompt or DEFAULT_OCR_PROMPT,
            temperature=OCR_TEMPERATURE,
            images=[(mime_type, image_b64)],
        )

    async def _generate(self, system: Optional[str], prompt: str, temperature: float,
                        images: Optional[List[tuple]] = None) -> str:
        """Generate a response using the configured provider."""
        try:
            if self.config.provider == "gemini":
                return await self._gemini_generate(system, prompt, temperature, images)
            elif self.config.provider == "ollama":
                return await self._ollama_generate(system, prompt, temperature, images)
        except httpx.HTTPError as e:
            raise AIServiceError(f"{self.config.provider} request failed: {e}") from e
        except ValueError as e:
            raise AIServiceError(f"{self.config.provider} returned an unreadable response: {e}") from e
        raise AIServiceError(f"Unknown provider: {self.config.provider}")

    async def _ollama_generate(self, system: Optional[str], prompt: str, temperature: float,
                               images: Optional[List[tuple]] = None) -> str:
        """Generate using Ollama's local API."""
        payload = {
            "model": self.config.ollama_model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": temperature},
        }
        if system:
            payload["system"] = system
        if images:
            payload["images"] = [data for _, data in images]

        client = await self._get_client()
        response = await client.post(f"{self.config.ollama_base_url}/api/generate", json=payload)

        if response.status_code != 200:
            raise AIServiceError(f"Ollama error: {response.text}")

        return response.json().get("response", "").strip()

    async def _gemini_generate(self, system: Optional[str], prompt: str, temperature: float,
                               images: Optional[List[tuple]] = None) -> str:
        """Generate using Google Gemini's API."""
        if not self.config.gemini_api_key:
            raise AIServiceError("Gemini API key not configured. Set GEMINI_API_KEY or configure in settings.")

        parts = [{"text": prompt}]
        for mime_type, data in images or []:
            parts.append({"inline_data": {"mime_type": mime_type, "data": data}})
        payload = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {"temperature": temperature},
        }
        if system:
            payload["systemInstruction"] = {"role": "user", "parts": [{"text": system}]}

        client = await self._get_client()
        response = await client.post(
            f"https://generativelanguage.googleapis.com/v1beta/models/{self.config.gemini_model}:generateContent",
            params={"key": self.config.gemini_api_key},
            json=payload,
            timeout=60.0,
        )

        if response.status_code != 200:
            try:
                error_msg = response.json().get("error", {}).get("message", response.text)
            except ValueError:
                error_msg = response.text
            raise AIServiceError(f"Gemini error: {error_msg}")

        data = response.json()
        candidates = data.get("candidates", [])
        if candidates:
            parts = candidates[0].get("content", {}).get("parts", [])
            if parts:
                return parts[0].get("text", "").strip()

        return ""
