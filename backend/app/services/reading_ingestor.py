"""ReadingIngestor — feeds sensor readings from Redis into AlertService.

Subscribes to Redis PubSub `tanks:readings`. Each message is a JSON object:
  {"tank_id": "...", "level": 15.0, "pressure": 1800, "temperature": 21.5,
   "humidity": 40, "timestamp": "2026-01-01T12:00:00+00:00"}
timestamp is optional (server time is used when absent).
"""
import asyncio
import json
import logging
from datetime import datetime, timezone

from pydantic import ValidationError
from redis.asyncio import Redis

from config import settings
from alerting.errors import ConfigurationError, NotFoundError
from alerting.records import Reading
from services.alert_service import AlertService

logger = logging.getLogger("o2watch.reading_ingestor")


def parse_reading(payload: dict) -> Reading:
    data = dict(payload)
    data.setdefault("timestamp", datetime.now(timezone.utc))
    return Reading.model_validate(data)


class ReadingIngestor:

    def __init__(
        self,
        redis: Redis,
        service: AlertService,
        channel: str = settings.READINGS_CHANNEL,
    ):
        self.redis = redis
        self.service = service
        self.channel = channel
        self._running = False

    async def start(self) -> None:
        self._running = True
        logger.info("ReadingIngestor started (channel=%s)", self.channel)
        await self._subscribe()

    async def stop(self) -> None:
        self._running = False
        logger.info("ReadingIngestor stopped")

    # ------------------------------------------------------------------
    async def _subscribe(self) -> None:
        while self._running:
            pubsub = self.redis.pubsub()
            try:
                await pubsub.subscribe(self.channel)
                async for msg in pubsub.listen():
                    if not self._running:
                        break
                    if msg["type"] != "message":
                        continue
                    await self.handle_message(msg["data"])
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("ReadingIngestor subscribe error: %s", exc)
                await asyncio.sleep(2)
            finally:
                try:
                    await pubsub.unsubscribe(self.channel)
                    await pubsub.close()
                except Exception:
                    pass

    async def handle_message(self, raw) -> None:
        """Parse and process one message. Bad input is logged, never raised."""
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            reading = parse_reading(json.loads(raw))
        except (ValueError, TypeError, ValidationError) as exc:
            logger.warning("Malformed reading skipped: %s", exc)
            return

        try:
            await self.service.process_reading(reading)
        except NotFoundError as exc:
            logger.warning("Reading for unknown tank skipped: %s", exc)
        except ConfigurationError as exc:
            logger.error("Tank %s has an invalid configuration: %s", reading.tank_id, exc)
        except Exception as exc:
            logger.error("ReadingIngestor process error: %s", exc, exc_info=True)
