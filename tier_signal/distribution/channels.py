"""
TIER SIGNAL — Delivery Channels
Each channel pushes one gated record to one consumer and raises DeliveryError
on failure. Retrying is the distributor's job.
"""
import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import aiohttp
from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import TelegramError

from tier_signal.config.settings import TelegramSettings, get_settings
from tier_signal.core.errors import DeliveryError
from tier_signal.entitlements.models import Consumer
from tier_signal.store.base import Record
from tier_signal.store.models import RebalanceRecord, SignalRecord, record_to_dict
from tier_signal.utils.helpers import from_epoch_seconds
from tier_signal.utils.logger import get_logger

logger = get_logger("channels")


class Channel(ABC):
    name: str = "channel"

    def accepts(self, consumer: Consumer) -> bool:
        return True

    @abstractmethod
    async def send(self, consumer: Consumer, record: Record) -> None:
        pass

    async def close(self) -> None:
        pass


class LogChannel(Channel):
    """Writes deliveries to the structured log; used when no push channel is configured."""

    name = "log"

    async def send(self, consumer: Consumer, record: Record) -> None:
        logger.info("record_delivered", channel=self.name, consumer_id=consumer.consumer_id,
                    key=record.key)


class WebhookChannel(Channel):
    """POSTs the record JSON to the consumer's webhook with its X-Webhook-Key."""

    name = "webhook"

    def __init__(self, timeout_seconds: float = 10.0):
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    def accepts(self, consumer: Consumer) -> bool:
        return bool(consumer.webhook_url)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
        return self._session

    async def send(self, consumer: Consumer, record: Record) -> None:
        session = await self._get_session()
        headers = {"X-Webhook-Key": consumer.webhook_key or ""}
        try:
            async with session.post(consumer.webhook_url, json=record_to_dict(record),
                                    headers=headers) as resp:
                if resp.status >= 300:
                    raise DeliveryError(self.name, f"webhook returned {resp.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DeliveryError(self.name, f"webhook request failed: {e}") from e

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None


def _fmt(value: Optional[float], digits: int = 4) -> str:
    return "n/a" if value is None else f"{value:.{digits}f}"


def format_signal_message(record: SignalRecord) -> str:
    """Branded Markdown message for one signal record."""
    ind = record.indicators
    when = from_epoch_seconds(record.bucket).strftime("%Y-%m-%d %H:%M")

    message = (
        f"🚀 *TIER SIGNAL*\n"
        f"{'━' * 28}\n"
        f"\n"
        f"📌 *Asset:* `{record.asset}`  ⏱ *{record.timeframe.value}*\n"
        f"💵 *Close:* `{_fmt(ind.close)}`\n"
    )

    emas = "  ".join(f"EMA{p} `{_fmt(v)}`" for p, v in sorted(ind.ema.items()))
    if emas:
        message += f"📈 {emas}\n"
    if ind.bb is not None:
        message += (f"📊 *BB:* `{_fmt(ind.bb.lower)}` / `{_fmt(ind.bb.mid)}` / "
                    f"`{_fmt(ind.bb.upper)}`\n")
    if ind.macd is not None:
        message += f"〽️ *MACD hist:* `{_fmt(ind.macd.histogram)}`\n"
    if ind.stoch_rsi is not None:
        message += f"🎚 *StochRSI:* K `{ind.stoch_rsi.k:.1f}` D `{ind.stoch_rsi.d:.1f}`\n"
    for breaker in ind.circuit_breakers:
        message += f"🚨 *{breaker.kind}:* {breaker.message}\n"

    if record.summary_text:
        message += f"\n💡 _{record.summary_text[:400]}_\n"

    message += (
        f"\n🕐 *Bucket:* `{when} UTC`\n"
        f"{'━' * 28}"
    )
    return message


def format_rebalance_message(record: RebalanceRecord) -> str:
    result = record.result
    position = result.resulting_position
    return (
        f"🔁 *TIER SIGNAL — Rebalance*\n"
        f"{'━' * 28}\n"
        f"📌 `{record.asset}` {record.timeframe.value}\n"
        f"⚙️ *Action:* {result.action_taken}\n"
        f"📦 *Position:* {position.side} `{position.size_usd:.2f}` USD\n"
    )


class TelegramChannel(Channel):
    """python-telegram-bot delivery with a simple send-rate limit."""

    name = "telegram"

    def __init__(self, settings: Optional[TelegramSettings] = None, bot: Optional[Bot] = None):
        self.settings = settings or get_settings().telegram
        self._bot = bot
        self._last_send_time = 0.0
        self._message_count = 0
        self._lock = asyncio.Lock()

    def accepts(self, consumer: Consumer) -> bool:
        return bool(consumer.telegram_chat_id) and (self._bot is not None or bool(self.settings.bot_token))

    def _get_bot(self) -> Bot:
        if self._bot is None:
            if not self.settings.bot_token:
                raise DeliveryError(self.name, "bot token not configured")
            self._bot = Bot(token=self.settings.bot_token)
            logger.info("telegram_initialized")
        return self._bot

    async def _rate_limit(self) -> None:
        min_interval = 1.0 / self.settings.rate_limit_per_second
        elapsed = time.monotonic() - self._last_send_time
        if elapsed < min_interval:
            await asyncio.sleep(min_interval - elapsed)
        self._last_send_time = time.monotonic()

    async def send(self, consumer: Consumer, record: Record) -> None:
        if isinstance(record, SignalRecord):
            text = format_signal_message(record)
        else:
            text = format_rebalance_message(record)

        bot = self._get_bot()
        async with self._lock:
            await self._rate_limit()
            try:
                await bot.send_message(chat_id=consumer.telegram_chat_id, text=text,
                                       parse_mode=ParseMode.MARKDOWN)
            except TelegramError as e:
                raise DeliveryError(self.name, str(e)) from e
        self._message_count += 1
        logger.info("telegram_sent", consumer_id=consumer.consumer_id, key=record.key,
                    total_sent=self._message_count)

    async def close(self) -> None:
        if self._bot is not None:
            try:
                await self._bot.shutdown()
            except TelegramError as e:
                logger.warning("telegram_shutdown_error", error=str(e))

    @property
    def stats(self) -> Dict[str, Any]:
        return {"configured": bool(self.settings.bot_token), "messages_sent": self._message_count}
