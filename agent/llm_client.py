"""
Reasoning Client
================
The swarm's link to an LLM, via the OpenRouter chat-completions API.

Two questions get asked:
1. score(prompt): "How good is this token?" -> {score 0-100, reasoning, signal}
2. narrative_analysis(summary): "What themes is the market trading right now?"
   -> up to 8 narratives, best first

Models don't always answer in clean JSON. They wrap it in ```json fences,
add chatter, or return a score of "high". The decoder handles that:
- Code fences are stripped, then the text is parsed as JSON
- Anything unreadable becomes a neutral fallback (score 0 / SKIP, or no
  narratives) tagged `fallback=True`, never an exception
- A network failure or non-200 reply IS an exception (GatewayError), because
  "the model said nothing useful" and "we never reached the model" call for
  different handling upstream

Usage:
    client = ReasoningClient(api_key, model="deepseek/deepseek-chat")
    await client.initialize()
    result = await client.score("Token: PEPE ...")
    if not result.fallback and result.value.signal == "BUY":
        ...
"""

import re
import json
import asyncio
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import aiohttp

from utils.errors import GatewayError, ParseError
from utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

SIGNALS = ("BUY", "WATCH", "SKIP", "RISKY")
TRENDS = ("rising", "stable", "falling")
MAX_NARRATIVES = 8

SCORE_SYSTEM_PROMPT = """You are a memecoin trading analyst. You score tokens 0-100 based on their potential.
Respond ONLY with valid JSON: {"score": number, "reasoning": "brief reason", "signal": "BUY"|"WATCH"|"SKIP"|"RISKY"}
Score guide: 90+ = strong buy setup, 75-89 = promising watch, 60-74 = neutral, <60 = skip.
Consider: narrative strength, holder distribution, liquidity depth, dev wallet %, social momentum, smart money flow."""

NARRATIVE_SYSTEM_PROMPT = """You analyze memecoin market data to identify trending narratives.
Respond ONLY with valid JSON: {"narratives": [{"name": "narrative name", "score": 0-100, "tokens": ["$TICKER1"], "trend": "rising"|"stable"|"falling"}]}
Look for: AI agents, animal metas, DeFi narratives, cultural moments, influencer-driven pumps, Solana ecosystem plays.
Max 8 narratives, ranked by score."""

_FENCE_OPEN = re.compile(r"```json\n?")


@dataclass
class ScoreResult:
    score: float
    reasoning: str
    signal: str

    def to_dict(self) -> dict:
        return {"score": self.score, "reasoning": self.reasoning, "signal": self.signal}


@dataclass
class Decoded(Generic[T]):
    """
    A decoded model answer.
    fallback=True means the raw text was unusable and `value` is the neutral default.
    """

    value: T
    fallback: bool = False
    error: str | None = None


def strip_code_fences(text: str) -> str:
    """Remove ```json / ``` markers anywhere in the text."""
    return _FENCE_OPEN.sub("", text or "").replace("```", "").strip()


def _parse_json_object(raw: str) -> dict:
    cleaned = strip_code_fences(raw)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ParseError(f"invalid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise ParseError(f"expected a JSON object, got {type(payload).__name__}")
    return payload


def decode_score(raw: str) -> Decoded[ScoreResult]:
    """Turn the model's raw answer into a ScoreResult, or the SKIP fallback."""
    try:
        payload = _parse_json_object(raw)
        try:
            score = float(payload["score"])
        except (KeyError, TypeError, ValueError) as e:
            raise ParseError(f"missing or non-numeric score: {e}") from e
        score = min(100.0, max(0.0, score))

        signal = str(payload.get("signal") or "SKIP").upper()
        if signal not in SIGNALS:
            signal = "SKIP"

        reasoning = str(payload.get("reasoning") or "")
        return Decoded(ScoreResult(score=score, reasoning=reasoning, signal=signal))
    except ParseError as e:
        return Decoded(
            ScoreResult(score=0, reasoning="Failed to parse LLM response", signal="SKIP"),
            fallback=True,
            error=str(e),
        )


def decode_narratives(raw: str) -> Decoded[list[dict]]:
    """
    Turn the model's raw answer into at most 8 narratives sorted by score.
    Malformed entries are dropped; an unreadable answer yields [] as fallback.
    """
    try:
        payload = _parse_json_object(raw)
        items = payload.get("narratives")
        if not isinstance(items, list):
            raise ParseError("missing 'narratives' list")
    except ParseError as e:
        return Decoded([], fallback=True, error=str(e))

    narratives = []
    for item in items:
        if not isinstance(item, dict) or not str(item.get("name") or "").strip():
            continue
        try:
            score = min(100.0, max(0.0, float(item.get("score") or 0)))
        except (TypeError, ValueError):
            continue
        trend = str(item.get("trend") or "stable").lower()
        tokens = item.get("tokens") or []
        narratives.append({
            "name": str(item["name"]).strip(),
            "score": score,
            "trend": trend if trend in TRENDS else "stable",
            "tokens": [str(t) for t in tokens] if isinstance(tokens, list) else [],
        })

    narratives.sort(key=lambda n: n["score"], reverse=True)
    return Decoded(narratives[:MAX_NARRATIVES])


class ReasoningClient:
    """
    OpenRouter chat client for token scoring and narrative analysis.

    Usage:
        client = ReasoningClient(api_key)
        await client.initialize()
        decoded = await client.score(prompt)
        await client.close()
    """

    BASE_URL = "https://openrouter.ai/api/v1"

    def __init__(
        self,
        api_key: str,
        model: str = "deepseek/deepseek-chat",
        session: aiohttp.ClientSession | None = None,
        base_url: str | None = None,
        max_tokens: int = 2048,
    ):
        self.api_key = api_key
        self.model = model
        self.session = session
        self._owns_session = session is None
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.max_tokens = max_tokens

    async def initialize(self) -> None:
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=60))

    async def close(self) -> None:
        if self.session and self._owns_session:
            await self.session.close()
        self.session = None

    async def chat(self, messages: list[dict], temperature: float = 0.3, json_mode: bool = False) -> str:
        """
        One chat-completions call. Returns the assistant's text ("" if none).
        Raises GatewayError on transport failure or a non-200 status.
        """
        body: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": temperature,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": "https://swarm-trader.local",
        }

        try:
            async with self.session.post(f"{self.base_url}/chat/completions", json=body, headers=headers) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise GatewayError("openrouter", f"HTTP {response.status}: {error_text[:300]}", response.status)
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise GatewayError("openrouter", str(e) or type(e).__name__) from e

        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            return ""

    async def score(self, prompt: str) -> Decoded[ScoreResult]:
        """Score one token description. Never raises on a bad answer, only on transport."""
        raw = await self.chat(
            [
                {"role": "system", "content": SCORE_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=0.2,
            json_mode=True,
        )
        decoded = decode_score(raw)
        if decoded.fallback:
            logger.warning("llm_score_unparseable", error=decoded.error, raw=raw[:200])
        return decoded

    async def narrative_analysis(self, summary: str) -> Decoded[list[dict]]:
        """Find the market's current narratives from a one-line-per-token summary."""
        raw = await self.chat(
            [
                {"role": "system", "content": NARRATIVE_SYSTEM_PROMPT},
                {"role": "user", "content": summary},
            ],
            temperature=0.3,
            json_mode=True,
        )
        decoded = decode_narratives(raw)
        if decoded.fallback:
            logger.warning("llm_narratives_unparseable", error=decoded.error, raw=raw[:200])
        return decoded
