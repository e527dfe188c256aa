"""Device fingerprint registry: recognizes returning hardware/browser combinations."""

import hashlib
import json
from datetime import UTC, datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models import DeviceFingerprintDB

logger = structlog.get_logger()

# Client-observable attributes folded into the fingerprint hash, in hash order.
FINGERPRINT_ATTRIBUTES: tuple[str, ...] = (
    "user_agent",
    "platform",
    "language",
    "languages",
    "timezone",
    "screen_width",
    "screen_height",
    "color_depth",
    "pixel_ratio",
    "hardware_concurrency",
    "device_memory",
    "max_touch_points",
    "cookies_enabled",
    "do_not_track",
    "canvas_hash",
    "webgl_vendor",
    "webgl_renderer",
    "audio_hash",
    "fonts_hash",
    "plugins_hash",
)


def compute_fingerprint_hash(attributes: dict) -> str | None:
    """Hash the known attributes into a stable hex digest.

    Returns None when none of the known attributes is present, so an empty
    payload never collapses every device onto one hash.
    """
    if not any(attributes.get(key) is not None for key in FINGERPRINT_ATTRIBUTES):
        return None
    canonical = json.dumps(
        [[key, attributes.get(key)] for key in FINGERPRINT_ATTRIBUTES],
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class FingerprintRegistry:
    """Persists and matches device fingerprints per user."""

    async def resolve(
        self,
        session: AsyncSession,
        user_id: str,
        raw_attributes: dict,
        now: datetime | None = None,
    ) -> tuple[int | None, bool]:
        """Return ``(fingerprint_id, is_known_device)`` for this user's device.

        A miss inserts the fingerprint inside a savepoint. Concurrent first
        logins race on the (user_id, fingerprint_hash) unique constraint; the
        loser re-reads the winning row instead of failing.
        """
        now = now or datetime.now(UTC)
        fingerprint_hash = compute_fingerprint_hash(raw_attributes)
        if fingerprint_hash is None:
            return None, False

        existing = await self._find(session, user_id, fingerprint_hash)
        if existing is not None:
            existing.last_seen_at = now
            return existing.id, True

        row = DeviceFingerprintDB(
            user_id=user_id,
            fingerprint_hash=fingerprint_hash,
            attribute_count=sum(
                1 for key in FINGERPRINT_ATTRIBUTES if raw_attributes.get(key) is not None
            ),
            first_seen_at=now,
            last_seen_at=now,
            trust_flag=False,
        )
        try:
            async with session.begin_nested():
                session.add(row)
                await session.flush()
        except IntegrityError:
            winner = await self._find(session, user_id, fingerprint_hash)
            if winner is None:
                raise
            logger.info("fingerprint_race_lost", user_id=user_id, fingerprint_id=winner.id)
            return winner.id, False

        logger.info("fingerprint_created", user_id=user_id, fingerprint_id=row.id)
        return row.id, False

    async def mark_trusted(self, session: AsyncSession, fingerprint_id: int) -> None:
        await session.execute(
            update(DeviceFingerprintDB)
            .where(DeviceFingerprintDB.id == fingerprint_id)
            .values(trust_flag=True)
        )

    async def list_devices(self, session: AsyncSession, user_id: str) -> list[DeviceFingerprintDB]:
        stmt = (
            select(DeviceFingerprintDB)
            .where(DeviceFingerprintDB.user_id == user_id)
            .order_by(DeviceFingerprintDB.last_seen_at.desc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def _find(
        self, session: AsyncSession, user_id: str, fingerprint_hash: str
    ) -> DeviceFingerprintDB | None:
        stmt = select(DeviceFingerprintDB).where(
            DeviceFingerprintDB.user_id == user_id,
            DeviceFingerprintDB.fingerprint_hash == fingerprint_hash,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()
