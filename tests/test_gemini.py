import asyncio
import re

import aiohttp
import pytest
from aioresponses import aioresponses

from flowall_crawler.apis.gemini import GeminiProvider, classify_status, extract_text
from flowall_crawler.errors import EnrichmentError, FailureKind

BASE = "https://gemini.test/v1"
ENDPOINT = re.compile(r"^https://gemini\.test/v1/models/test-model:generateContent.*$")


def reply(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


@pytest.mark.parametrize(
    "status,kind",
    [
        (429, FailureKind.QUOTA_EXHAUSTED),
        (401, FailureKind.INVALID_CREDENTIAL),
        (403, FailureKind.INVALID_CREDENTIAL),
        (500, FailureKind.TRANSIENT),
        (400, FailureKind.TRANSIENT),
    ],
)
def test_classify_status(status, kind):
    assert classify_status(status) is kind


def test_extract_text_rejects_empty_candidates():
    with pytest.raises(EnrichmentError) as info:
        extract_text({"candidates": []})
    assert info.value.kind is FailureKind.MALFORMED_RESPONSE


class TestGeminiProvider:
    @pytest.mark.asyncio
    async def test_generate_posts_prompt_with_key(self):
        async with aiohttp.ClientSession() as session:
            provider = GeminiProvider(session, base_url=BASE, model="test-model", timeout=5)
            with aioresponses() as m:
                m.post(ENDPOINT, status=200, payload=reply(' {"title": "x"} '))
                text = await provider.generate("hello", "secret-key")
                ((_, url), calls) = next(iter(m.requests.items()))
        assert text == '{"title": "x"}'
        assert url.query["key"] == "secret-key"
        assert calls[0].kwargs["json"]["contents"][0]["parts"][0]["text"] == "hello"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,kind", [(429, FailureKind.QUOTA_EXHAUSTED), (401, FailureKind.INVALID_CREDENTIAL)])
    async def test_breaker_statuses(self, status, kind):
        async with aiohttp.ClientSession() as session:
            provider = GeminiProvider(session, base_url=BASE, model="test-model")
            with aioresponses() as m:
                m.post(ENDPOINT, status=status, body="denied")
                with pytest.raises(EnrichmentError) as info:
                    await provider.generate("hello", "k")
        assert info.value.kind is kind
        assert info.value.status == status

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        async with aiohttp.ClientSession() as session:
            provider = GeminiProvider(session, base_url=BASE, model="test-model")
            with aioresponses() as m:
                m.post(ENDPOINT, exception=asyncio.TimeoutError())
                with pytest.raises(EnrichmentError) as info:
                    await provider.generate("hello", "k")
        assert info.value.kind is FailureKind.TRANSIENT

    @pytest.mark.asyncio
    async def test_non_json_body_is_malformed(self):
        async with aiohttp.ClientSession() as session:
            provider = GeminiProvider(session, base_url=BASE, model="test-model")
            with aioresponses() as m:
                m.post(ENDPOINT, status=200, body="<html>oops</html>")
                with pytest.raises(EnrichmentError) as info:
                    await provider.generate("hello", "k")
        assert info.value.kind is FailureKind.MALFORMED_RESPONSE
