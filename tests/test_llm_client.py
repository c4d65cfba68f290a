import pytest

from agent.llm_client import (
    SCORE_SYSTEM_PROMPT,
    ReasoningClient,
    decode_narratives,
    decode_score,
    strip_code_fences,
)
from utils.errors import GatewayError


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('```{"a": 1}```') == '{"a": 1}'
    assert strip_code_fences("") == ""


def test_decode_score_reads_fenced_json():
    decoded = decode_score('```json\n{"score": 85, "reasoning": "volume surge", "signal": "BUY"}\n```')
    assert decoded.fallback is False
    assert decoded.value.score == 85
    assert decoded.value.signal == "BUY"
    assert decoded.value.reasoning == "volume surge"


def test_decode_score_clamps_and_normalizes_signal():
    decoded = decode_score('{"score": 150, "reasoning": "moon", "signal": "ape"}')
    assert decoded.value.score == 100
    assert decoded.value.signal == "SKIP"

    decoded = decode_score('{"score": -5, "reasoning": "rug", "signal": "risky"}')
    assert decoded.value.score == 0
    assert decoded.value.signal == "RISKY"


@pytest.mark.parametrize("raw", ["not json at all", '{"score": "high"}', "[1, 2]", '{"reasoning": "x"}'])
def test_decode_score_falls_back_to_skip(raw):
    decoded = decode_score(raw)
    assert decoded.fallback is True
    assert decoded.error
    assert decoded.value.score == 0
    assert decoded.value.signal == "SKIP"
    assert decoded.value.reasoning == "Failed to parse LLM response"


def test_decode_narratives_sorts_caps_and_cleans():
    items = ", ".join(
        f'{{"name": "N{i}", "score": {i * 10}, "tokens": ["$T{i}"], "trend": "rising"}}' for i in range(10)
    )
    raw = f'{{"narratives": [{items}, {{"score": 99}}, {{"name": "Cats", "score": 55, "trend": "sideways"}}]}}'

    decoded = decode_narratives(raw)
    assert decoded.fallback is False
    names = [n["name"] for n in decoded.value]
    assert len(names) == 8
    assert names[:3] == ["N9", "N8", "N7"]

    cats = decode_narratives('{"narratives": [{"name": "Cats", "score": 55, "trend": "sideways"}]}').value[0]
    assert cats["trend"] == "stable"
    assert cats["tokens"] == []


def test_decode_narratives_fallback_is_empty():
    decoded = decode_narratives("the market is vibing")
    assert decoded.fallback is True
    assert decoded.value == []

    assert decode_narratives('{"narratives": "none"}').fallback is True


@pytest.mark.asyncio
async def test_score_asks_with_low_temperature_json_mode(monkeypatch):
    client = ReasoningClient("key", model="test/model")
    calls = []

    async def fake_chat(messages, temperature=0.3, json_mode=False):
        calls.append((messages, temperature, json_mode))
        return '{"score": 91, "reasoning": "strong narrative fit", "signal": "BUY"}'

    monkeypatch.setattr(client, "chat", fake_chat)

    decoded = await client.score("Token: PEPE (Pepe)")
    assert decoded.value.score == 91
    messages, temperature, json_mode = calls[0]
    assert temperature == 0.2
    assert json_mode is True
    assert messages[0] == {"role": "system", "content": SCORE_SYSTEM_PROMPT}
    assert messages[1]["content"] == "Token: PEPE (Pepe)"


@pytest.mark.asyncio
async def test_narrative_analysis_returns_fallback_on_garbage(monkeypatch):
    client = ReasoningClient("key")

    async def fake_chat(messages, temperature=0.3, json_mode=False):
        assert temperature == 0.3
        return "Sorry, I can't help with that."

    monkeypatch.setattr(client, "chat", fake_chat)

    decoded = await client.narrative_analysis("PEPE | MC: 1.2M")
    assert decoded.fallback is True
    assert decoded.value == []


@pytest.mark.asyncio
async def test_transport_failure_propagates(monkeypatch):
    client = ReasoningClient("key")

    async def fake_chat(messages, temperature=0.3, json_mode=False):
        raise GatewayError("openrouter", "HTTP 429: rate limited", 429)

    monkeypatch.setattr(client, "chat", fake_chat)

    with pytest.raises(GatewayError) as exc_info:
        await client.score("Token: PEPE (Pepe)")
    assert exc_info.value.status == 429
