from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, List, Optional, Protocol

from .keys import KeyRotation
from .limiter import ConcurrencyLimiter
from .retry import RetryExecutor
from ..errors import CrawlError, EnrichmentError, FailureKind, NoCredentialAvailableError

logger = logging.getLogger(__name__)


class TextProvider(Protocol):
    """
    Text-generation port. Implementations raise EnrichmentError carrying a
    FailureKind; only the kind feeds the circuit breaker.
    """

    async def generate(self, prompt: str, api_key: str) -> str:
        ...


@dataclass
class EnrichmentResult:
    title_translation: Optional[str] = None
    description: Optional[str] = None
    tag_translations: Optional[List[str]] = field(default=None)

    def is_empty(self) -> bool:
        return not (self.title_translation or self.description or self.tag_translations)


def fallback_description(title: str, tags: List[str]) -> str:
    """Deterministic, non-generated description: title plus comma-joined tags."""
    if not tags:
        return title
    return f"{title}, {', '.join(tags)}"


PROMPT_TEMPLATE = """You are writing catalogue metadata for a live wallpaper.

Title: {title}
Tags: {tags}

Return a single JSON object and nothing else, with these keys:
  "title": the title translated into {language}
  "description": a short {language} description of the style, theme and mood (at most 50 characters)
  "tags": a JSON array with each tag translated into {language}, same order as the input
"""

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def build_prompt(title: str, tags: List[str], language: str) -> str:
    return PROMPT_TEMPLATE.format(title=title, tags=", ".join(tags) or "(none)", language=language)


def parse_response(text: str) -> EnrichmentResult:
    """
    Read the structured answer, tolerating Markdown fences and prose around
    the JSON object. Missing keys stay None; a response with no usable key
    at all is malformed.
    """
    candidate = text.strip()
    fenced = _FENCE_RE.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()
    start, end = candidate.find("{"), candidate.rfind("}")
    if start == -1 or end <= start:
        raise EnrichmentError("response contains no JSON object", FailureKind.MALFORMED_RESPONSE)
    try:
        payload = json.loads(candidate[start : end + 1])
    except json.JSONDecodeError as exc:
        raise EnrichmentError(f"undecodable JSON: {exc}", FailureKind.MALFORMED_RESPONSE) from exc
    if not isinstance(payload, dict):
        raise EnrichmentError("response JSON is not an object", FailureKind.MALFORMED_RESPONSE)

    result = EnrichmentResult(
        title_translation=_clean_str(payload.get("title")),
        description=_clean_str(payload.get("description")),
        tag_translations=_clean_list(payload.get("tags")),
    )
    if result.is_empty():
        raise EnrichmentError("response has none of title/description/tags", FailureKind.MALFORMED_RESPONSE)
    return result


def _clean_str(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def _clean_list(value: Any) -> Optional[List[str]]:
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list):
        return None
    out = [v.strip() for v in value if isinstance(v, str) and v.strip()]
    return out or None


class EnrichmentClient:
    """
    Calls the text-generation provider through key rotation, the enrichment
    pool and the retry executor. Never raises for provider trouble: every
    failure path ends in the fallback description.
    """

    def __init__(
        self,
        provider: Optional[TextProvider],
        keys: KeyRotation,
        limiter: ConcurrencyLimiter,
        *,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        language: str = "Simplified Chinese",
    ) -> None:
        self.provider = provider
        self.keys = keys
        self.limiter = limiter
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.language = language

    @property
    def enabled(self) -> bool:
        return self.provider is not None and len(self.keys) > 0

    async def enrich(self, title: str, tags: List[str]) -> EnrichmentResult:
        fallback = fallback_description(title, tags)
        provider = self.provider
        if provider is None or not len(self.keys):
            return EnrichmentResult(description=fallback)

        prompt = build_prompt(title, tags, self.language)
        retry = RetryExecutor(min(self.max_attempts, len(self.keys)), self.base_delay)
        try:
            result = await retry.execute(lambda: self._attempt(provider, prompt), f"enrich {title!r}")
        except CrawlError as exc:
            logger.warning("Enrichment failed, using fallback description: %s", exc)
            return EnrichmentResult(description=fallback)

        if not result.description:
            result = replace(result, description=fallback)
        return result

    async def _attempt(self, provider: TextProvider, prompt: str) -> EnrichmentResult:
        state = self.keys.next()
        if state is None:
            raise NoCredentialAvailableError("no enrichment key available (all tripped)")
        try:
            async with self.limiter.slot():
                text = await provider.generate(prompt, state.key)
            return parse_response(text)
        except EnrichmentError as exc:
            self.keys.mark_failed(state, exc.kind)
            logger.debug("Key %s failed: %s (%s)", state.masked, exc, exc.kind.value)
            raise
