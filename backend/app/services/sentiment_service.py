"""
Sentiment step for opinion creation.

The provider is an injected async callable-like object exposing
``analyze(text) -> str``. Bulk ingestion uses a shorter timeout and falls
back to ``neutral``; single submissions fall back to a keyword heuristic.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

from app.core.config import get_settings
from app.core.logging import get_logger
from app.models import Sentiment

logger = get_logger("sentiment_service")
settings = get_settings()

POSITIVE_KEYWORDS = ["良い", "素晴らしい", "嬉しい", "満足", "最高", "good", "great", "excellent", "amazing"]
NEGATIVE_KEYWORDS = ["悪い", "困る", "問題", "不満", "ダメ", "bad", "terrible", "awful", "problem"]

_VALID = {item.value for item in Sentiment}


class SentimentProvider(Protocol):
    async def analyze(self, text: str) -> str: ...


def keyword_sentiment(text: str) -> Sentiment:
    lowered = (text or "").lower()
    positive = sum(1 for word in POSITIVE_KEYWORDS if word in lowered)
    negative = sum(1 for word in NEGATIVE_KEYWORDS if word in lowered)
    if positive > negative:
        return Sentiment.POSITIVE
    if negative > positive:
        return Sentiment.NEGATIVE
    return Sentiment.NEUTRAL


class SentimentService:
    def __init__(
        self,
        provider: SentimentProvider | None = None,
        *,
        timeout_seconds: float | None = None,
        bulk_timeout_seconds: float | None = None,
    ):
        self._provider = provider
        self._timeout = timeout_seconds or settings.sentiment_timeout_seconds
        self._bulk_timeout = bulk_timeout_seconds or settings.bulk_sentiment_timeout_seconds

    async def classify(self, text: str, *, bulk: bool = False) -> Sentiment:
        fallback = Sentiment.NEUTRAL if bulk else keyword_sentiment(text)
        if self._provider is None:
            return fallback

        timeout = self._bulk_timeout if bulk else self._timeout
        try:
            raw = await asyncio.wait_for(self._provider.analyze(text), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("sentiment_timeout", bulk=bulk, timeout_seconds=timeout, fallback=fallback.value)
            return fallback
        except Exception as exc:  # noqa: BLE001
            logger.warning("sentiment_provider_failed", bulk=bulk, error=str(exc), fallback=fallback.value)
            return fallback

        value = str(raw or "").strip().lower()
        if value not in _VALID:
            logger.warning("sentiment_unexpected_value", value=value[:32], fallback=fallback.value)
            return fallback
        return Sentiment(value)
