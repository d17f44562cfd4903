"""Generative-answer and question-normalization client.

Every response from the generation service is reduced to a single
``GenerationResult`` at this boundary, whatever envelope it arrived in.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from openai import AsyncOpenAI, OpenAIError

from observability.metrics import record_upstream_failure
from services.models import ScoredChunk, Turn

logger = logging.getLogger(__name__)

NORMALIZE_PROMPT = "Rewrite this question in clear, grammatically correct English (keep meaning same): {question}"

SYSTEM_PROMPT = (
    "You are {site_name}'s website assistant. Answer ONLY using the context below"
    "{site_hint}. If the answer isn't present, say you don't know and suggest the closest "
    "relevant page. Always cite the page URLs in parentheses."
)


@dataclass
class GenerationResult:
    """Text from the generation service, or the reason there is none."""
    text: str = ""
    ok: bool = True
    error: Optional[str] = None

    @classmethod
    def success(cls, text: str) -> "GenerationResult":
        return cls(text=text.strip(), ok=True)

    @classmethod
    def failure(cls, error: str) -> "GenerationResult":
        return cls(text="", ok=False, error=error)

    @property
    def is_empty(self) -> bool:
        return self.ok and not self.text


def _get(obj: Any, key: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def parse_generation_payload(payload: Any) -> str:
    """Pull answer text out of a generation response.

    Accepts, in order of preference: an ``output_text`` field, the text blocks
    of ``output[].content[]``, or a chat-style ``choices[0].message.content``.
    Works for SDK objects and plain dicts alike. Returns "" if none is present.
    """
    if payload is None:
        return ""

    output_text = _get(payload, "output_text")
    if isinstance(output_text, str) and output_text.strip():
        return output_text.strip()

    parts: List[str] = []
    for item in _get(payload, "output") or []:
        content = _get(item, "content")
        if isinstance(content, str):
            parts.append(content)
            continue
        for block in content or []:
            text = _get(block, "text")
            if text:
                parts.append(str(text))
    if parts:
        joined = "".join(parts).strip()
        if joined:
            return joined

    choices = _get(payload, "choices") or []
    if choices:
        message = _get(choices[0], "message")
        content = _get(message, "content") if message is not None else None
        if isinstance(content, str):
            return content.strip()

    return ""


def build_system_instruction(site_name: str, site_prefix: str = "") -> str:
    site_hint = f" (from {site_prefix})" if site_prefix else ""
    return SYSTEM_PROMPT.format(site_name=site_name, site_hint=site_hint)


def build_context_block(selected: Sequence[ScoredChunk]) -> str:
    """Render selected chunks as numbered sources with their urls."""
    return "\n\n".join(
        f"Source {i}:\n{item.text}\n(URL: {item.url})" for i, item in enumerate(selected, start=1)
    )


def build_final_message(question: str, context: str) -> str:
    return (
        f"Question: {question}\n\n"
        f"=== WEBSITE CONTEXT START ===\n{context}\n=== WEBSITE CONTEXT END ==="
    )


def history_messages(turns: Sequence[Turn]) -> List[Dict[str, str]]:
    return [{"role": turn.role, "content": turn.content} for turn in turns]


class AnswerGenerator:
    """Calls the OpenAI Responses API for answers and question rewrites."""

    def __init__(self, api_key: str = "", model: str = "gpt-4o",
                 normalize_model: str = "gpt-4o-mini", temperature: float = 0.2,
                 max_output_tokens: int = 500, timeout: float = 20.0,
                 client: Optional[AsyncOpenAI] = None):
        self.model = model
        self.normalize_model = normalize_model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.client = client or AsyncOpenAI(api_key=api_key or None, timeout=timeout)

    async def generate(self, system_instruction: str, turns: Sequence[Dict[str, str]],
                       final_user_message: str) -> GenerationResult:
        """Ask the model for an answer. Never raises for service failures."""
        messages = [
            {"role": "system", "content": system_instruction},
            *turns,
            {"role": "user", "content": final_user_message},
        ]
        try:
            response = await self.client.responses.create(
                model=self.model,
                input=messages,
                temperature=self.temperature,
                max_output_tokens=self.max_output_tokens,
            )
        except OpenAIError as e:
            logger.warning(f"Generation call failed ({self.model}): {e}")
            record_upstream_failure("generation")
            return GenerationResult.failure(str(e))

        return GenerationResult.success(parse_generation_payload(response))

    async def normalize_question(self, question: str) -> str:
        """Grammar-normalize a question; returns the input unchanged on failure."""
        try:
            response = await self.client.responses.create(
                model=self.normalize_model,
                input=NORMALIZE_PROMPT.format(question=question),
            )
        except OpenAIError as e:
            logger.warning(f"Question normalization failed, using raw text: {e}")
            record_upstream_failure("normalization")
            return question

        normalized = parse_generation_payload(response)
        return normalized or question
