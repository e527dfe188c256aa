"""Unit tests for checkout telemetry collection and feature extraction."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.db.models import CheckoutSessionDB
from src.domains.fraud.collector import (
    SignalCollector,
    build_feature_vector,
    detect_headless,
    empty_telemetry,
    keystroke_interval_stddev,
    merge_telemetry,
    pointer_movement_variance,
)
from src.domains.fraud.exceptions import SessionClosed, SessionNotFound, SignalCollectionDegraded
from src.domains.fraud.fingerprint import compute_fingerprint_hash
from src.domains.fraud.models import (
    PointerSample,
    SessionEventsRequest,
    SessionStatus,
    SessionTelemetry,
)
from tests.conftest import mock_session, result_with

NOW = datetime(2026, 1, 15, 14, 0, 0, tzinfo=UTC)


def _samples(points: list[tuple[float, float]]) -> list[dict]:
    return [{"x": x, "y": y, "t": i * 16.0} for i, (x, y) in enumerate(points)]


def _checkout(**kwargs) -> CheckoutSessionDB:
    defaults = {
        "id": "sess-1",
        "user_id": "user-1",
        "fingerprint_id": 7,
        "telemetry": empty_telemetry(),
        "status": SessionStatus.ACTIVE.value,
        "created_at": NOW,
        "updated_at": NOW,
        "expires_at": NOW + timedelta(minutes=30),
    }
    defaults.update(kwargs)
    return CheckoutSessionDB(**defaults)


def _registry(fingerprint_id=7, known=True):
    registry = MagicMock()
    registry.resolve = AsyncMock(return_value=(fingerprint_id, known))
    return registry


class TestFeatureMath:
    def test_constant_steps_have_zero_variance(self):
        samples = _samples([(0, 0), (3, 4), (6, 8), (9, 12)])
        assert pointer_movement_variance(samples, 3) == 0.0

    def test_irregular_steps_have_variance(self):
        samples = _samples([(0, 0), (1, 0), (40, 0), (42, 0)])
        assert pointer_movement_variance(samples, 3) > 100

    def test_samples_sorted_by_time(self):
        samples = [{"x": 6, "y": 8, "t": 32}, {"x": 0, "y": 0, "t": 0}, {"x": 3, "y": 4, "t": 16}]
        assert pointer_movement_variance(samples, 3) == 0.0

    def test_too_few_pointer_samples(self):
        with pytest.raises(SignalCollectionDegraded):
            pointer_movement_variance(_samples([(0, 0), (1, 1)]), 3)

    def test_keystroke_stddev(self):
        assert keystroke_interval_stddev([0, 100, 200, 300], 3) == 0.0
        assert keystroke_interval_stddev([0, 80, 260, 300], 3) > 50

    def test_too_few_keystrokes(self):
        with pytest.raises(SignalCollectionDegraded):
            keystroke_interval_stddev([0, 120], 3)


class TestDetectHeadless:
    def test_webdriver_flag(self):
        assert detect_headless({"webdriver": True}) is True

    def test_headless_user_agent(self):
        assert detect_headless({"user_agent": "Mozilla/5.0 HeadlessChrome/120.0"}) is True

    def test_blocked_canvas(self):
        assert detect_headless({"user_agent": "Firefox", "canvas_hash": "blocked"}) is True

    def test_regular_browser(self, device_attributes):
        assert detect_headless(device_attributes) is False

    def test_no_attributes_is_unknown(self):
        assert detect_headless({}) is None


class TestBuildFeatureVector:
    def test_full_telemetry(self, device_attributes):
        telemetry = {
            "device_attributes": device_attributes,
            "pointer_samples": _samples([(0, 0), (5, 1), (30, 9), (31, 40)]),
            "keystroke_timestamps_ms": [0, 140, 210, 480, 530],
            "time_to_submit_ms": 48000,
        }
        vector = build_feature_vector(telemetry, "h" * 64)
        assert vector.low_confidence is False
        assert vector.degraded_fields == []
        assert vector.pointer_movement_variance > 0
        assert vector.keystroke_interval_stddev > 0
        assert vector.is_headless_suspected is False
        assert vector.cookies_enabled is True

    def test_missing_telemetry_degrades_not_fails(self):
        vector = build_feature_vector(empty_telemetry(), None)
        assert vector.low_confidence is True
        assert vector.pointer_movement_variance is None
        assert vector.keystroke_interval_stddev is None
        assert vector.time_to_submit_ms is None
        assert set(vector.degraded_fields) == {
            "pointer_movement_variance",
            "keystroke_interval_stddev",
            "time_to_submit_ms",
            "is_headless_suspected",
            "cookies_enabled",
            "fingerprint_hash",
        }


class TestMergeTelemetry:
    def test_appends_samples_and_overrides_attributes(self):
        existing = {
            **empty_telemetry(),
            "device_attributes": {"platform": "MacIntel", "language": "en-US"},
            "keystroke_timestamps_ms": [0, 100],
        }
        incoming = SessionEventsRequest(
            device_attributes={"language": "fr-FR"},
            pointer_samples=[PointerSample(x=1, y=2, t=3)],
            keystroke_timestamps_ms=[250],
            time_to_submit_ms=9000,
        )
        merged = merge_telemetry(existing, incoming)
        assert merged["device_attributes"] == {"platform": "MacIntel", "language": "fr-FR"}
        assert merged["keystroke_timestamps_ms"] == [0, 100, 250]
        assert merged["pointer_samples"] == [{"x": 1, "y": 2, "t": 3}]
        assert merged["time_to_submit_ms"] == 9000

    def test_does_not_mutate_existing(self):
        existing = empty_telemetry()
        merge_telemetry(existing, SessionEventsRequest(keystroke_timestamps_ms=[1, 2]))
        assert existing["keystroke_timestamps_ms"] == []


class TestSignalCollector:
    @pytest.mark.asyncio
    async def test_start_session(self, device_attributes):
        session = mock_session()
        collector = SignalCollector(registry=_registry(known=False))

        row = await collector.start_session(session, "user-1", device_attributes, NOW)

        assert row.status == SessionStatus.ACTIVE.value
        assert row.expires_at == NOW + timedelta(minutes=30)
        assert row.fingerprint_id == 7
        assert row.telemetry["is_known_device"] is False
        session.add.assert_called_once_with(row)
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_record_events_unknown_session(self):
        session = mock_session()
        session.execute = AsyncMock(return_value=result_with(scalar=None))
        with pytest.raises(SessionNotFound):
            await SignalCollector(registry=_registry()).record_events(
                session, "missing", SessionEventsRequest(), NOW
            )

    @pytest.mark.asyncio
    async def test_record_events_expired_session(self):
        session = mock_session()
        stale = _checkout(expires_at=NOW - timedelta(seconds=1))
        session.execute = AsyncMock(return_value=result_with(scalar=stale))
        with pytest.raises(SessionClosed):
            await SignalCollector(registry=_registry()).record_events(
                session, "sess-1", SessionEventsRequest(), NOW
            )
        session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_record_events_merges(self):
        session = mock_session()
        row = _checkout()
        session.execute = AsyncMock(return_value=result_with(scalar=row))
        events = SessionEventsRequest(keystroke_timestamps_ms=[0, 90, 200])

        await SignalCollector(registry=_registry()).record_events(session, "sess-1", events, NOW)

        assert row.telemetry["keystroke_timestamps_ms"] == [0, 90, 200]
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_collect_inline_telemetry(self, device_attributes):
        session = mock_session()
        registry = _registry(fingerprint_id=9, known=True)
        telemetry = SessionTelemetry(
            device_attributes=device_attributes,
            keystroke_timestamps_ms=[0, 110, 190, 400],
            time_to_submit_ms=30000,
        )

        collected = await SignalCollector(registry=registry).collect(
            session, "user-1", telemetry, NOW
        )

        assert collected.fingerprint_id == 9
        assert collected.is_known_device is True
        assert collected.features.fingerprint_hash == compute_fingerprint_hash(device_attributes)
        assert "pointer_movement_variance" in collected.features.degraded_fields
        session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_collect_reuses_resolved_device(self, device_attributes):
        session = mock_session()
        stored = {
            **empty_telemetry(),
            "device_attributes": device_attributes,
            "fingerprint_hash": compute_fingerprint_hash(device_attributes),
            "is_known_device": True,
        }
        session.execute = AsyncMock(return_value=result_with(scalar=_checkout(telemetry=stored)))
        registry = _registry()

        collected = await SignalCollector(registry=registry).collect(
            session, "user-1", SessionTelemetry(session_id="sess-1"), NOW
        )

        assert collected.session_id == "sess-1"
        assert collected.is_known_device is True
        registry.resolve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_collect_ignores_other_users_session(self, device_attributes):
        session = mock_session()
        foreign = _checkout(user_id="someone-else")
        session.execute = AsyncMock(return_value=result_with(scalar=foreign))

        collected = await SignalCollector(registry=_registry()).collect(
            session, "user-1", SessionTelemetry(session_id="sess-1"), NOW
        )

        assert collected.features.low_confidence is True
        assert collected.telemetry["device_attributes"] == {}

    @pytest.mark.asyncio
    async def test_expire_stale_sessions(self):
        session = mock_session()
        session.execute = AsyncMock(return_value=result_with(rowcount=3))
        assert await SignalCollector().expire_stale_sessions(session, NOW) == 3
        session.commit.assert_awaited_once()
