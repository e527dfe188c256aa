"""Signal collector: turns raw checkout telemetry into a normalized feature vector.

Collection never blocks checkout. Sparse or missing telemetry nulls the
affected fields and marks the vector low-confidence instead of failing.
"""

import math
import statistics
import uuid
from datetime import UTC, datetime, timedelta
from itertools import pairwise

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models import CheckoutSessionDB

from .config import FraudConfig, default_config
from .exceptions import SessionClosed, SessionNotFound, SignalCollectionDegraded
from .fingerprint import FingerprintRegistry, compute_fingerprint_hash
from .models import (
    CollectedSignals,
    FeatureVector,
    SessionEventsRequest,
    SessionStatus,
    SessionTelemetry,
)

logger = structlog.get_logger()

HEADLESS_UA_MARKERS = ("headlesschrome", "phantomjs", "puppeteer", "playwright")
MAX_RETAINED_SAMPLES = 2000


def detect_headless(attributes: dict) -> bool | None:
    if not attributes:
        return None
    if attributes.get("webdriver") is True:
        return True
    user_agent = str(attributes.get("user_agent") or "").lower()
    if any(marker in user_agent for marker in HEADLESS_UA_MARKERS):
        return True
    if attributes.get("webgl_renderer") == "disabled":
        return True
    return attributes.get("canvas_hash") == "blocked"


def pointer_movement_variance(samples: list[dict], min_samples: int) -> float:
    """Population variance of step distances between consecutive pointer samples."""
    if len(samples) < max(min_samples, 2):
        raise SignalCollectionDegraded("too few pointer samples", samples=len(samples))
    ordered = sorted(samples, key=lambda s: s["t"])
    steps = [math.hypot(b["x"] - a["x"], b["y"] - a["y"]) for a, b in pairwise(ordered)]
    return statistics.pvariance(steps)


def keystroke_interval_stddev(timestamps: list[float], min_keystrokes: int) -> float:
    if len(timestamps) < max(min_keystrokes, 2):
        raise SignalCollectionDegraded("too few keystrokes", keystrokes=len(timestamps))
    intervals = [b - a for a, b in pairwise(sorted(timestamps))]
    return statistics.pstdev(intervals)


def empty_telemetry() -> dict:
    return {
        "device_attributes": {},
        "pointer_samples": [],
        "keystroke_timestamps_ms": [],
        "time_to_submit_ms": None,
    }


def merge_telemetry(
    existing: dict | None,
    incoming: SessionTelemetry | SessionEventsRequest,
) -> dict:
    """Fold an incoming telemetry batch into the stored session telemetry."""
    merged = empty_telemetry()
    merged.update(existing or {})
    merged["device_attributes"] = {**merged["device_attributes"], **incoming.device_attributes}
    samples = merged["pointer_samples"] + [s.model_dump() for s in incoming.pointer_samples]
    merged["pointer_samples"] = samples[-MAX_RETAINED_SAMPLES:]
    keystrokes = merged["keystroke_timestamps_ms"] + list(incoming.keystroke_timestamps_ms)
    merged["keystroke_timestamps_ms"] = keystrokes[-MAX_RETAINED_SAMPLES:]
    if incoming.time_to_submit_ms is not None:
        merged["time_to_submit_ms"] = incoming.time_to_submit_ms
    return merged


def build_feature_vector(
    telemetry: dict,
    fingerprint_hash: str | None,
    config: FraudConfig | None = None,
) -> FeatureVector:
    cfg = config or default_config
    degraded: list[str] = []

    pointer_variance: float | None = None
    try:
        pointer_variance = pointer_movement_variance(
            telemetry.get("pointer_samples") or [], cfg.sessions.min_pointer_samples
        )
    except SignalCollectionDegraded:
        degraded.append("pointer_movement_variance")

    keystroke_stddev: float | None = None
    try:
        keystroke_stddev = keystroke_interval_stddev(
            telemetry.get("keystroke_timestamps_ms") or [], cfg.sessions.min_keystrokes
        )
    except SignalCollectionDegraded:
        degraded.append("keystroke_interval_stddev")

    time_to_submit = telemetry.get("time_to_submit_ms")
    if time_to_submit is None:
        degraded.append("time_to_submit_ms")

    attributes = telemetry.get("device_attributes") or {}
    is_headless = detect_headless(attributes)
    cookies_enabled = attributes.get("cookies_enabled")
    if is_headless is None:
        degraded.append("is_headless_suspected")
    if cookies_enabled is None:
        degraded.append("cookies_enabled")
    if fingerprint_hash is None:
        degraded.append("fingerprint_hash")

    if degraded:
        logger.info("signal_collection_degraded", fields=degraded)

    return FeatureVector(
        pointer_movement_variance=pointer_variance,
        keystroke_interval_stddev=keystroke_stddev,
        time_to_submit_ms=time_to_submit,
        is_headless_suspected=is_headless,
        cookies_enabled=cookies_enabled,
        fingerprint_hash=fingerprint_hash,
        low_confidence=bool(degraded),
        degraded_fields=degraded,
    )


class SignalCollector:
    """Owns checkout session telemetry from first event to completion or expiry."""

    def __init__(
        self,
        config: FraudConfig | None = None,
        registry: FingerprintRegistry | None = None,
    ) -> None:
        self._config = config or default_config
        self._registry = registry or FingerprintRegistry()

    async def start_session(
        self,
        session: AsyncSession,
        user_id: str,
        device_attributes: dict,
        now: datetime | None = None,
    ) -> CheckoutSessionDB:
        now = now or datetime.now(UTC)
        telemetry = empty_telemetry()
        telemetry["device_attributes"] = dict(device_attributes)
        fingerprint_id, is_known = await self._resolve_device(session, user_id, telemetry, now)

        row = CheckoutSessionDB(
            id=str(uuid.uuid4()),
            user_id=user_id,
            fingerprint_id=fingerprint_id,
            telemetry=telemetry,
            status=SessionStatus.ACTIVE.value,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(minutes=self._config.sessions.ttl_minutes),
        )
        session.add(row)
        await session.commit()
        logger.info(
            "session_started",
            session_id=row.id,
            user_id=user_id,
            is_known_device=is_known,
        )
        return row

    async def record_events(
        self,
        session: AsyncSession,
        session_id: str,
        events: SessionEventsRequest,
        now: datetime | None = None,
    ) -> CheckoutSessionDB:
        now = now or datetime.now(UTC)
        row = await self.load_session(session, session_id)
        if row is None:
            raise SessionNotFound(f"Session {session_id} not found", session_id=session_id)
        if row.status != SessionStatus.ACTIVE or row.expires_at <= now:
            raise SessionClosed(f"Session {session_id} is {row.status}", session_id=session_id)

        telemetry = merge_telemetry(row.telemetry, events)
        if events.device_attributes:
            row.fingerprint_id, _ = await self._resolve_device(
                session, row.user_id, telemetry, now
            )
        row.telemetry = telemetry
        row.updated_at = now
        await session.commit()
        logger.debug(
            "telemetry_recorded",
            session_id=session_id,
            pointer_samples=len(telemetry["pointer_samples"]),
            keystrokes=len(telemetry["keystroke_timestamps_ms"]),
        )
        return row

    async def collect(
        self,
        session: AsyncSession,
        user_id: str,
        telemetry: SessionTelemetry,
        now: datetime | None = None,
    ) -> CollectedSignals:
        """Build the feature vector for an assessment without writing the session row."""
        now = now or datetime.now(UTC)
        row = None
        if telemetry.session_id:
            row = await self.load_session(session, telemetry.session_id)
            if row is not None and row.user_id != user_id:
                logger.warning(
                    "session_user_mismatch",
                    session_id=telemetry.session_id,
                    user_id=user_id,
                )
                row = None

        merged = merge_telemetry(row.telemetry if row else None, telemetry)
        fingerprint_hash = compute_fingerprint_hash(merged["device_attributes"])
        already_resolved = (
            row is not None
            and fingerprint_hash is not None
            and row.telemetry.get("fingerprint_hash") == fingerprint_hash
        )
        if already_resolved:
            fingerprint_id = row.fingerprint_id
            is_known = bool(row.telemetry.get("is_known_device"))
        else:
            fingerprint_id, is_known = await self._resolve_device(session, user_id, merged, now)

        features = build_feature_vector(merged, fingerprint_hash, self._config)
        return CollectedSignals(
            session_id=row.id if row else (telemetry.session_id or str(uuid.uuid4())),
            features=features,
            fingerprint_id=fingerprint_id,
            is_known_device=is_known,
            telemetry=merged,
        )

    async def finalize(
        self,
        session: AsyncSession,
        session_id: str,
        status: SessionStatus = SessionStatus.COMPLETED,
        now: datetime | None = None,
    ) -> bool:
        now = now or datetime.now(UTC)
        result = await session.execute(
            update(CheckoutSessionDB)
            .where(
                CheckoutSessionDB.id == session_id,
                CheckoutSessionDB.status == SessionStatus.ACTIVE.value,
            )
            .values(status=status.value, closed_at=now, updated_at=now)
        )
        return result.rowcount > 0

    async def expire_stale_sessions(
        self, session: AsyncSession, now: datetime | None = None
    ) -> int:
        now = now or datetime.now(UTC)
        result = await session.execute(
            update(CheckoutSessionDB)
            .where(
                CheckoutSessionDB.status == SessionStatus.ACTIVE.value,
                CheckoutSessionDB.expires_at <= now,
            )
            .values(status=SessionStatus.EXPIRED.value, closed_at=now, updated_at=now)
        )
        await session.commit()
        expired = result.rowcount or 0
        if expired:
            logger.info("sessions_expired", count=expired)
        return expired

    async def _resolve_device(
        self,
        session: AsyncSession,
        user_id: str,
        telemetry: dict,
        now: datetime,
    ) -> tuple[int | None, bool]:
        attributes = telemetry["device_attributes"]
        fingerprint_id, is_known = await self._registry.resolve(session, user_id, attributes, now)
        telemetry["fingerprint_hash"] = compute_fingerprint_hash(attributes)
        telemetry["is_known_device"] = is_known
        return fingerprint_id, is_known

    async def load_session(
        self, session: AsyncSession, session_id: str
    ) -> CheckoutSessionDB | None:
        result = await session.execute(
            select(CheckoutSessionDB).where(CheckoutSessionDB.id == session_id)
        )
        return result.scalar_one_or_none()
