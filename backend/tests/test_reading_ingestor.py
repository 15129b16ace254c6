"""Tests for ReadingIngestor message handling."""

import json
from unittest.mock import AsyncMock

import pytest

from alerting.enums import AlertType
from alerting.errors import ConfigurationError, NotFoundError
from services.reading_ingestor import ReadingIngestor, parse_reading

from factories import TANK_ID


def message(**fields):
    data = {"tank_id": TANK_ID, "level": 15.0, "pressure": 1800.0}
    data.update(fields)
    return json.dumps(data).encode()


def test_parse_reading_defaults_timestamp():
    reading = parse_reading({"tank_id": TANK_ID, "level": 50, "pressure": 900})

    assert reading.timestamp.tzinfo is not None
    assert reading.temperature is None


def test_parse_reading_keeps_given_timestamp():
    reading = parse_reading({
        "tank_id": TANK_ID, "level": 50, "pressure": 900,
        "timestamp": "2026-03-01T12:00:00+00:00",
    })
    assert reading.timestamp.hour == 12


@pytest.mark.asyncio
async def test_message_reaches_service(service, alert_repo, redis):
    ingestor = ReadingIngestor(redis, service, channel="tanks:readings")

    await ingestor.handle_message(message(temperature=21.0))

    open_alerts = await alert_repo.list_open_for_tank(TANK_ID)
    assert [a.type for a in open_alerts] == [AlertType.tank_low_level]


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", [
    b"not json",
    b"[1, 2, 3]",
    b'"just a string"',
    b"\xff\xfe{",
    json.dumps({"tank_id": TANK_ID, "level": "lots"}).encode(),
    json.dumps({"tank_id": TANK_ID, "level": float("nan"), "pressure": 1800.0}).encode(),
    b'{"tank_id": "tank-001", "level": 15.0, "pressure": Infinity}',
])
async def test_malformed_messages_are_skipped(raw):
    service = AsyncMock()
    ingestor = ReadingIngestor(AsyncMock(), service)

    await ingestor.handle_message(raw)

    service.process_reading.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    NotFoundError("Tank", "tank-404"),
    ConfigurationError("capacity must be positive", TANK_ID),
    RuntimeError("db gone"),
])
async def test_processing_errors_do_not_escape(error):
    service = AsyncMock()
    service.process_reading.side_effect = error
    ingestor = ReadingIngestor(AsyncMock(), service)

    await ingestor.handle_message(message())

    service.process_reading.assert_awaited_once()
