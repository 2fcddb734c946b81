from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

import aiohttp
from aiohttp import ClientSession, ClientTimeout

from ..errors import EnrichmentError, FailureKind

logger = logging.getLogger(__name__)


class GeminiProvider:
    """
    Text-generation port backed by the Gemini `generateContent` endpoint.
    Only the failure classification leaves this module; the wire shape stays here.
    """

    def __init__(
        self,
        session: ClientSession,
        *,
        base_url: str = "https://generativelanguage.googleapis.com/v1",
        model: str = "gemini-1.5-flash",
        timeout: float = 15.0,
        temperature: float = 0.4,
        max_output_tokens: int = 400,
    ) -> None:
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    async def generate(self, prompt: str, api_key: str) -> str:
        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
            },
        }
        try:
            async with self.session.post(
                self.endpoint,
                params={"key": api_key},
                json=body,
                timeout=ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status >= 400:
                    detail = (await resp.text())[:200]
                    raise EnrichmentError(
                        f"Gemini HTTP {resp.status}: {detail}", classify_status(resp.status), resp.status
                    )
                try:
                    payload = await resp.json(content_type=None)
                except ValueError as exc:
                    raise EnrichmentError(
                        "Gemini returned a non-JSON body", FailureKind.MALFORMED_RESPONSE
                    ) from exc
        except asyncio.TimeoutError as exc:
            raise EnrichmentError(f"Gemini timeout after {self.timeout:.0f}s", FailureKind.TRANSIENT) from exc
        except aiohttp.ClientError as exc:
            raise EnrichmentError(f"Gemini connection error: {exc!r}", FailureKind.TRANSIENT) from exc

        return extract_text(payload)


def classify_status(status: int) -> FailureKind:
    if status == 429:
        return FailureKind.QUOTA_EXHAUSTED
    if status in (401, 403):
        return FailureKind.INVALID_CREDENTIAL
    return FailureKind.TRANSIENT


def extract_text(payload: Dict[str, Any]) -> str:
    try:
        text = payload["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError) as exc:
        raise EnrichmentError("Gemini response has no candidate text", FailureKind.MALFORMED_RESPONSE) from exc
    if not isinstance(text, str) or not text.strip():
        raise EnrichmentError("Gemini returned empty text", FailureKind.MALFORMED_RESPONSE)
    return text.strip()
