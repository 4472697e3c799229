"""Client for the external sentiment scoring service."""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from ..core.config import Settings


logger = logging.getLogger(__name__)


class SentimentAnalyzer(ABC):
    """Requests sentiment scoring for a piece of text."""

    @abstractmethod
    async def request_sentiment(
        self,
        text: str,
        source: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        pass


class HttpSentimentAnalyzer(SentimentAnalyzer):
    """
    Posts text to SENTIMENT_SERVICE_URL.

    Scoring happens out-of-band: the stream must keep ingesting when the
    scorer is down, so failures are logged rather than raised.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None):
        self._url = settings.sentiment_service_url
        self._timeout = settings.channel_timeout_seconds
        self._http_client = http_client

    async def request_sentiment(
        self,
        text: str,
        source: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if not self._url:
            logger.debug(f"Sentiment service not configured; skipping {source} text")
            return

        payload = {"text": text, "source": source, "metadata": metadata or {}}
        try:
            if self._http_client is not None:
                response = await self._http_client.post(self._url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self._url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Sentiment request failed for {source} text: {e}")
