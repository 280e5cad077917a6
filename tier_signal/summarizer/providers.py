"""
TIER SIGNAL — Reasoning Model Providers
Opaque text/image-producing collaborators behind one async interface.
Every failure surfaces as SummarizationError; retries live in the Summarizer.
"""
import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Type, TypeVar

import aiohttp
from pydantic import BaseModel, ValidationError

from tier_signal.config.settings import SummarizerSettings, get_settings
from tier_signal.core.errors import SummarizationError
from tier_signal.indicators.levels import levels_csv
from tier_signal.summarizer.cleaner import parse_lenient_json
from tier_signal.summarizer.models import SummaryRequest, SummaryResult, TradeDecision, TradeRequest
from tier_signal.utils.logger import get_logger

logger = get_logger("reasoning_model")

M = TypeVar("M", bound=BaseModel)

SUMMARY_INSTRUCTIONS = """You are a market analyst. Summarize the indicator snapshot below.
- Read momentum from Stochastic RSI (<20 oversold, >80 overbought) and EMA(9) vs EMA(21).
- Judge stretch from the position of the close within the Bollinger Bands.
- Confirm direction with the MACD histogram sign.
- Take the recent rebalance history into account when describing the current stance.
- When order book levels are given, name the nearest support and resistance.
- Treat null indicators as unavailable; do not guess their values.
Respond with JSON only: {"summaryText": "<under 500 chars>", "summaryImageRef": null}
"""

TRADE_INSTRUCTIONS = """You manage one position. Decide whether to trade this bucket.
- Trade only when at least two indicators agree with the direction.
- Prefer "flat" when momentum is mixed.
Respond with JSON only:
{"should_trade": true|false, "side": "long"|"short"|"flat", "size_usd": number, "rationale": "<short>"}
"""


def _validate(model: Type[M], data: Any) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise SummarizationError(f"response does not match {model.__name__}: {e}") from e


class ReasoningModel(ABC):
    """External model producing summaries (and, optionally, trade decisions)."""

    name: str = "model"

    @abstractmethod
    async def summarize(self, request: SummaryRequest) -> SummaryResult:
        pass

    async def decide_trade(self, request: TradeRequest) -> TradeDecision:
        raise SummarizationError(f"{self.name} does not support trade decisions")

    async def close(self) -> None:
        pass


class _HttpModel(ReasoningModel):

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
        return self._session

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def _post_json(self, url: str, body: Dict[str, Any],
                         headers: Optional[Dict[str, str]] = None,
                         params: Optional[Dict[str, str]] = None) -> Any:
        session = await self._get_session()
        try:
            async with session.post(url, json=body, headers=headers, params=params) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise SummarizationError(
                        f"{self.name} returned {resp.status}: {text[:200]}"
                    )
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as e:
            raise SummarizationError(f"{self.name} request failed: {e}") from e


class PredictionEndpointModel(_HttpModel):
    """
    Hosted prediction endpoint.
    POST {asset, timeframe, bucket, indicators, rebalanceHistory, chartImage?}
    -> {summaryText, summaryImageRef}
    """

    name = "prediction_endpoint"

    def __init__(self, url: str, api_key: str = "", timeout_seconds: float = 60.0):
        super().__init__(timeout_seconds)
        self.url = url
        self.api_key = api_key

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            return {}
        return {"Authorization": f"Bearer {self.api_key}"}

    async def summarize(self, request: SummaryRequest) -> SummaryResult:
        data = await self._post_json(self.url, request.to_payload(), headers=self._headers())
        return _validate(SummaryResult, data)

    async def decide_trade(self, request: TradeRequest) -> TradeDecision:
        body = request.model_dump(mode="json")
        data = await self._post_json(f"{self.url.rstrip('/')}/trade", body,
                                     headers=self._headers())
        return _validate(TradeDecision, data)


class GeminiModel(_HttpModel):
    """Gemini generateContent with a JSON response MIME type."""

    name = "gemini"

    def __init__(self, api_key: str, model: str = "gemini-2.0-flash-lite",
                 base_url: str = "https://generativelanguage.googleapis.com/v1beta/models/",
                 timeout_seconds: float = 60.0):
        super().__init__(timeout_seconds)
        self.api_key = api_key
        self.model = model
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}{self.model}:generateContent"

    @staticmethod
    def build_summary_prompt(request: SummaryRequest) -> str:
        snapshot = {
            "asset": request.asset,
            "timeframe": request.timeframe.value,
            "bucket": request.bucket,
            "indicators": request.indicators.model_dump(mode="json"),
            "rebalance_history": [r.model_dump(mode="json") for r in request.rebalance_history],
        }
        prompt = f"{SUMMARY_INSTRUCTIONS}\nInput:\n{json.dumps(snapshot, indent=2)}"
        if request.levels is not None and not request.levels.empty:
            prompt += (f"\nSupport levels (bids):\n{levels_csv(request.levels.support)}"
                       f"\nResistance levels (asks):\n{levels_csv(request.levels.resistance)}")
        return prompt

    @staticmethod
    def build_trade_prompt(request: TradeRequest) -> str:
        return f"{TRADE_INSTRUCTIONS}\nInput:\n{json.dumps(request.model_dump(mode='json'), indent=2)}"

    def _body(self, prompt: str, image_b64: Optional[str] = None) -> Dict[str, Any]:
        parts: list = [{"text": prompt}]
        if image_b64:
            parts.append({"inlineData": {"mimeType": "image/png", "data": image_b64}})
        return {
            "contents": [{"parts": parts}],
            "generationConfig": {"responseMimeType": "application/json"},
        }

    @staticmethod
    def extract_text(response: Any) -> str:
        """First candidate's first text part."""
        try:
            return response["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise SummarizationError("no text output in gemini response") from e

    async def _generate(self, prompt: str, image_b64: Optional[str] = None) -> Any:
        response = await self._post_json(self.endpoint, self._body(prompt, image_b64),
                                         params={"key": self.api_key})
        text = self.extract_text(response)
        try:
            return parse_lenient_json(text)
        except ValueError as e:
            raise SummarizationError(f"gemini returned invalid JSON: {e}") from e

    async def summarize(self, request: SummaryRequest) -> SummaryResult:
        data = await self._generate(self.build_summary_prompt(request), request.chart_image)
        return _validate(SummaryResult, data)

    async def decide_trade(self, request: TradeRequest) -> TradeDecision:
        data = await self._generate(self.build_trade_prompt(request))
        return _validate(TradeDecision, data)


def build_model(settings: Optional[SummarizerSettings] = None) -> Optional[ReasoningModel]:
    """Configured reasoning model, or None when summarization is disabled or unconfigured."""
    settings = settings or get_settings().summarizer
    provider = settings.provider.lower()

    if provider == "gemini":
        if not settings.gemini_api_key:
            logger.warning("summarizer_disabled", provider=provider, reason="GEMINI_API_KEY not set")
            return None
        return GeminiModel(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            base_url=settings.gemini_base_url,
            timeout_seconds=settings.timeout_seconds,
        )
    if provider == "endpoint":
        if not settings.prediction_api_url:
            logger.warning("summarizer_disabled", provider=provider,
                           reason="PREDICTION_API_URL not set")
            return None
        return PredictionEndpointModel(
            url=settings.prediction_api_url,
            api_key=settings.prediction_api_key,
            timeout_seconds=settings.timeout_seconds,
        )
    logger.info("summarizer_disabled", provider=provider)
    return None
