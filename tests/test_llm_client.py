"""Tests for the text polish client."""

import json

import httpx

from drink_diary.llm_client import TextPolisher


def _polisher(handler, api_key="sk-test"):
    return TextPolisher(api_key, "https://llm.example/v1/", "test-model",
                        timeout=5, transport=httpx.MockTransport(handler))


async def test_polish_posts_chat_completion_and_cleans_markdown():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "Here is the entry:\n**Racked** the mead."}}]})

    out = await _polisher(handler).polish("Cherry mead", "rakced the mead")

    assert out == "Racked the mead."
    assert seen["url"] == "https://llm.example/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "test-model"
    assert seen["body"]["temperature"] == 0.1
    assert "rakced the mead" in seen["body"]["messages"][-1]["content"]


async def test_http_error_degrades_to_none():
    def handler(request):
        return httpx.Response(503, text="busy")

    assert await _polisher(handler).polish("Cherry mead", "racked") is None


async def test_malformed_response_degrades_to_none():
    def handler(request):
        return httpx.Response(200, json={"unexpected": True})

    assert await _polisher(handler).polish("Cherry mead", "racked") is None


async def test_disabled_without_key_makes_no_request():
    def handler(request):
        raise AssertionError("no request expected")

    polisher = _polisher(handler, api_key="  ")

    assert not polisher.enabled
    assert await polisher.polish("Cherry mead", "racked") is None


async def test_non_text_content_degrades_to_none():
    def number(request):
        return httpx.Response(200, json={"choices": [{"message": {"content": 42}}]})

    def parts(request):
        return httpx.Response(200, json={"choices": [{"message": {"content": [{"type": "text", "text": "x"}]}}]})

    assert await _polisher(number).polish("Cherry mead", "racked") is None
    assert await _polisher(parts).polish("Cherry mead", "racked") is None
