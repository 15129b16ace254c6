"""Tests for threshold evaluation and duplicate suppression."""

import math
from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from alerting import lifecycle
from alerting.enums import AlertCategory, AlertSeverity, AlertStatus, AlertType
from alerting.errors import ConfigurationError
from alerting.evaluator import (
    EvaluationPolicy,
    evaluate,
    fill_percentage,
    reconcile,
    validate_configuration,
)
from alerting.records import TankConfiguration

from factories import NOW, TANK_ID, make_alert, make_config, make_reading


def breached(verdicts):
    return {v.type: v for v in verdicts if v.breached}


class TestEvaluate:

    def test_low_level_breach(self):
        """100L tank at 15L with a 20% refill threshold is low"""
        verdicts = evaluate(make_config(), make_reading(level=15.0))

        hits = breached(verdicts)
        assert set(hits) == {AlertType.tank_low_level}
        v = hits[AlertType.tank_low_level]
        assert v.severity == AlertSeverity.high
        assert v.category == AlertCategory.tank_monitoring
        assert v.sensor_data.fill_percentage == 15.0
        assert v.context["refill_threshold"] == 20.0
        assert "15.0%" in v.message

    def test_level_at_threshold_is_breach(self):
        hits = breached(evaluate(make_config(), make_reading(level=20.0)))
        assert AlertType.tank_low_level in hits

    def test_healthy_reading_reports_every_condition_unbreached(self):
        verdicts = evaluate(make_config(), make_reading(temperature=21.0))
        assert verdicts
        assert not breached(verdicts)

    def test_global_default_used_when_tank_has_no_threshold(self):
        config = make_config(refill_threshold=None)
        policy = EvaluationPolicy(default_refill_threshold=15.0)

        assert AlertType.tank_low_level not in breached(
            evaluate(config, make_reading(level=16.0), policy)
        )
        hits = breached(evaluate(config, make_reading(level=15.0), policy))
        assert hits[AlertType.tank_low_level].context["refill_threshold"] == 15.0

    def test_low_pressure_never_also_high(self):
        """90 psi against 100..2200"""
        hits = breached(evaluate(make_config(), make_reading(pressure=90.0)))

        assert AlertType.tank_low_pressure in hits
        assert AlertType.tank_high_pressure not in hits
        assert hits[AlertType.tank_low_pressure].severity == AlertSeverity.high

    def test_high_pressure_is_medium(self):
        hits = breached(evaluate(make_config(), make_reading(pressure=2300.0)))

        assert set(hits) == {AlertType.tank_high_pressure}
        assert hits[AlertType.tank_high_pressure].severity == AlertSeverity.medium

    def test_critical_level_by_fill_and_by_pressure(self):
        by_fill = breached(evaluate(make_config(), make_reading(level=8.0)))
        assert by_fill[AlertType.tank_critical_level].severity == AlertSeverity.critical
        assert AlertType.tank_low_level in by_fill

        by_pressure = breached(evaluate(make_config(), make_reading(pressure=40.0)))
        assert AlertType.tank_critical_level in by_pressure
        assert AlertType.tank_low_pressure in by_pressure

    def test_missing_temperature_is_not_a_breach(self):
        verdicts = evaluate(make_config(), make_reading(temperature=None))
        assert AlertType.tank_temperature_out_of_range not in {v.type for v in verdicts}

    def test_temperature_outside_global_band(self):
        hits = breached(evaluate(make_config(), make_reading(temperature=55.0)))

        v = hits[AlertType.tank_temperature_out_of_range]
        assert v.severity == AlertSeverity.medium
        assert v.category == AlertCategory.safety

    def test_tank_temperature_band_overrides_global(self):
        config = make_config(max_temperature=30.0)
        hits = breached(evaluate(config, make_reading(temperature=35.0)))
        assert hits[AlertType.tank_temperature_out_of_range].context["max_temperature"] == 30.0

    def test_temperature_monitoring_disabled(self):
        config = make_config(temperature_monitoring_enabled=False)
        assert not breached(evaluate(config, make_reading(temperature=90.0)))

    def test_humidity_only_checked_with_tank_band(self):
        assert not breached(evaluate(make_config(), make_reading(humidity=99.0)))

        config = make_config(max_humidity=70.0)
        hits = breached(evaluate(config, make_reading(humidity=85.0)))
        assert hits[AlertType.environmental_hazard].severity == AlertSeverity.low

    def test_leak_and_damage_flags(self):
        config = make_config(is_leaking=True, is_damaged=True)
        hits = breached(evaluate(config, make_reading()))

        assert hits[AlertType.tank_leak_detected].severity == AlertSeverity.critical
        assert hits[AlertType.tank_damage_detected].severity == AlertSeverity.high

    def test_leak_detection_disabled(self):
        config = make_config(is_leaking=True, leak_detection_enabled=False)
        assert AlertType.tank_leak_detected not in breached(evaluate(config, make_reading()))

    def test_alerts_disabled_yields_nothing(self):
        config = make_config(alerts_enabled=False, is_leaking=True)
        assert evaluate(config, make_reading(level=1.0)) == []


class TestConfigurationErrors:

    @pytest.mark.parametrize("overrides", [
        {"capacity": 0.0},
        {"capacity": -5.0},
        {"min_pressure": 2200.0},
        {"min_pressure": 2500.0},
        {"refill_threshold": 120.0},
        {"min_temperature": 30.0, "max_temperature": 10.0},
        {"critical_pressure": -1.0},
    ])
    def test_impossible_configuration_raises(self, overrides):
        with pytest.raises(ConfigurationError):
            evaluate(make_config(**overrides), make_reading())

    def test_reading_for_other_tank_raises(self):
        with pytest.raises(ConfigurationError):
            evaluate(make_config(), make_reading(tank_id="tank-999"))

    def test_fill_percentage_zero_capacity(self):
        with pytest.raises(ConfigurationError):
            fill_percentage(10.0, 0.0)


class TestReconcile:

    def test_emits_request_when_nothing_open(self):
        verdicts = evaluate(make_config(), make_reading(level=15.0))
        requests = reconcile(TANK_ID, verdicts, [], location="Ward B")

        assert len(requests) == 1
        req = requests[0]
        assert req.type == AlertType.tank_low_level
        assert req.severity == AlertSeverity.high
        assert req.tank_id == TANK_ID
        assert req.location == "Ward B"
        assert req.sensor_data.level == 15.0
        assert req.requires_acknowledgment is True

    def test_open_alert_suppresses_duplicate(self):
        existing = make_alert()
        verdicts = evaluate(make_config(), make_reading(level=12.0))

        assert reconcile(TANK_ID, verdicts, [existing]) == []

    def test_escalated_alert_still_suppresses(self):
        existing = lifecycle.escalate(make_alert(), "supervisor", "timeout")
        verdicts = evaluate(make_config(), make_reading(level=12.0))

        assert reconcile(TANK_ID, verdicts, [existing]) == []

    @pytest.mark.parametrize("close", [
        lambda a: lifecycle.resolve(a, "opX", "refilled"),
        lambda a: lifecycle.dismiss(a, "opX"),
    ])
    def test_closed_alert_rearms_condition(self, close):
        closed = close(make_alert())
        verdicts = evaluate(make_config(), make_reading(level=12.0))

        requests = reconcile(TANK_ID, verdicts, [closed])
        assert [r.type for r in requests] == [AlertType.tank_low_level]

    def test_open_alert_on_other_tank_does_not_suppress(self):
        other = make_alert(tank_id="tank-002")
        verdicts = evaluate(make_config(), make_reading(level=12.0))

        assert len(reconcile(TANK_ID, verdicts, [other])) == 1

    def test_continuous_breach_creates_at_most_one(self):
        open_alerts = []
        emitted = 0
        for level in (18.0, 15.0, 12.0, 9.0, 11.0):
            verdicts = evaluate(make_config(), make_reading(level=level))
            for req in reconcile(TANK_ID, verdicts, open_alerts):
                if req.type == AlertType.tank_low_level:
                    emitted += 1
                open_alerts.append(lifecycle.create_alert(req))
        assert emitted == 1

    def test_auto_escalation_follows_policy(self):
        verdicts = evaluate(make_config(), make_reading(pressure=2300.0, level=15.0))

        armed = {r.type: r for r in reconcile(TANK_ID, verdicts, [])}
        assert armed[AlertType.tank_low_level].auto_escalate is True
        assert armed[AlertType.tank_high_pressure].auto_escalate is False

        policy = EvaluationPolicy(auto_escalate=False, escalation_delay_seconds=60)
        off = reconcile(TANK_ID, verdicts, [], policy)
        assert all(not r.auto_escalate for r in off)
        assert all(r.escalation_delay_seconds == 60 for r in off)

    def test_acknowledged_alert_does_not_count_as_open(self):
        acked = lifecycle.acknowledge(make_alert(), "opA")
        assert acked.status == AlertStatus.acknowledged

        verdicts = evaluate(make_config(), make_reading(level=12.0))
        assert len(reconcile(TANK_ID, verdicts, [acked])) == 1


class TestNonFiniteValues:

    @pytest.mark.parametrize("field", ["capacity", "min_pressure", "max_pressure", "refill_threshold"])
    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
    def test_configuration_model_rejects(self, field, value):
        with pytest.raises(ValidationError):
            make_config(**{field: value})

    @pytest.mark.parametrize("field", ["level", "pressure", "temperature", "humidity"])
    def test_reading_model_rejects_nan(self, field):
        with pytest.raises(ValidationError):
            make_reading(**{field: math.nan})

    @pytest.mark.parametrize("overrides", [
        {"capacity": math.nan},
        {"max_pressure": math.inf},
        {"min_pressure": math.nan},
        {"critical_pressure": math.nan},
        {"refill_threshold": math.nan},
        {"max_temperature": math.nan},
        {"min_humidity": -math.inf},
    ])
    def test_unvalidated_configuration_still_raises(self, overrides):
        data = make_config().model_dump() | overrides
        config = TankConfiguration.model_construct(**data)

        with pytest.raises(ConfigurationError, match="finite"):
            validate_configuration(config)


class TestServiceDates:

    def test_maintenance_due_on_or_after_date(self):
        reading = make_reading()
        due = breached(evaluate(make_config(next_maintenance_date=reading.timestamp), reading))
        later = evaluate(make_config(next_maintenance_date=NOW + timedelta(days=7)), reading)

        v = due[AlertType.tank_maintenance_due]
        assert v.severity == AlertSeverity.low
        assert v.category == AlertCategory.maintenance
        assert AlertType.tank_maintenance_due not in breached(later)
        assert AlertType.tank_maintenance_due in {x.type for x in later}

    def test_expired_tank(self):
        config = make_config(expiration_date=NOW - timedelta(days=1))

        v = breached(evaluate(config, make_reading()))[AlertType.tank_expired]

        assert v.severity == AlertSeverity.high
        assert v.category == AlertCategory.safety
        assert "expired" in v.message

    def test_no_dates_no_verdicts(self):
        types = {v.type for v in evaluate(make_config(), make_reading())}
        assert AlertType.tank_maintenance_due not in types
        assert AlertType.tank_expired not in types

    def test_naive_dates_are_treated_as_utc(self):
        config = make_config(expiration_date=datetime(2026, 3, 1, 11, 0))

        assert AlertType.tank_expired in breached(evaluate(config, make_reading()))

    def test_expired_tank_gets_acknowledgeable_request(self):
        config = make_config(expiration_date=NOW - timedelta(days=1))
        requests = reconcile(TANK_ID, evaluate(config, make_reading()), [])

        expired = [r for r in requests if r.type == AlertType.tank_expired]
        assert len(expired) == 1
        assert expired[0].requires_acknowledgment is True


def test_default_critical_pressure_matches_tank_record():
    config = TankConfiguration(tank_id=TANK_ID, capacity=100.0, min_pressure=100.0, max_pressure=2200.0)

    assert config.critical_pressure == 50.0
    assert AlertType.tank_critical_level in breached(evaluate(config, make_reading(pressure=40.0)))
