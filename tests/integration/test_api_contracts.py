"""API contract tests for the Trustgate endpoints.

Validates HTTP methods, request schemas, response schemas and error mapping
with the database session replaced by a mock.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from src.api.routes import fraud as fraud_routes
from src.db.database import get_session
from src.main import app
from tests.conftest import ADMIN_HEADERS, mock_session, override_get_session

pytestmark = pytest.mark.integration

BASE_URL = "http://test"


# ---------------------------------------------------------------------------
# Helper: mock database session
# ---------------------------------------------------------------------------


def _mock_session():
    """Mock session answering every query as if the database were empty."""
    session = mock_session()

    mock_result = MagicMock()
    mock_result.scalar_one_or_none.return_value = None
    mock_result.scalar_one.return_value = 0
    mock_result.all.return_value = []
    mock_result.one.return_value = MagicMock(cnt=0, total=0)
    mock_result.scalars.return_value = MagicMock(all=MagicMock(return_value=[]))
    mock_result.rowcount = 1
    session.execute = AsyncMock(return_value=mock_result)

    return session


def _setup_session():
    """Install mock session override and return the mock."""
    mock = _mock_session()
    app.dependency_overrides[get_session] = override_get_session(mock)
    fraud_routes.rule_store.invalidate()
    return mock


def _teardown():
    app.dependency_overrides.clear()


def _client():
    transport = ASGITransport(app=app)
    return AsyncClient(transport=transport, base_url=BASE_URL)


# =========================================================================
# CHECKOUT PATH
# =========================================================================


class TestAssess:
    """POST /fraud/assess"""

    endpoint = "/fraud/assess"

    @pytest.mark.asyncio
    async def test_first_time_user_small_cart(self):
        _setup_session()
        persist = AsyncMock()
        try:
            with patch.object(fraud_routes.gate, "persist_assessment", persist):
                async with _client() as client:
                    resp = await client.post(
                        self.endpoint,
                        json={
                            "user_id": "user-1",
                            "cart_total": 50.0,
                            "session_telemetry": {"time_to_submit_ms": 42000},
                        },
                    )
            assert resp.status_code == 200
            data = resp.json()
            assert data["recommendation"] == "approve"
            assert data["risk_score"] == 15.0
            assert data["reasons"] == ["first_transaction"]
            assert data["trust_band"] == "new"
            assert data["degraded"] is True
            persist.assert_awaited_once()
        finally:
            _teardown()

    @pytest.mark.asyncio
    async def test_database_failure_returns_review(self):
        mock = _setup_session()
        mock.execute = AsyncMock(side_effect=ConnectionError("db down"))
        try:
            with patch.object(fraud_routes.gate, "persist_assessment", AsyncMock()):
                async with _client() as client:
                    resp = await client.post(
                        self.endpoint, json={"user_id": "user-1", "cart_total": 80.0}
                    )
            assert resp.status_code == 200
            assert resp.json()["recommendation"] == "review"
        finally:
            _teardown()

    @pytest.mark.asyncio
    async def test_negative_cart_rejected(self):
        _setup_session()
        try:
            async with _client() as client:
                resp = await client.post(
                    self.endpoint, json={"user_id": "user-1", "cart_total": -1}
                )
            assert resp.status_code == 422
        finally:
            _teardown()


class TestSessions:
    @pytest.mark.asyncio
    async def test_start_session(self):
        mock = _setup_session()
        try:
            async with _client() as client:
                resp = await client.post(
                    "/fraud/sessions",
                    json={"user_id": "user-1", "device_attributes": {}},
                )
            assert resp.status_code == 201
            data = resp.json()
            assert data["user_id"] == "user-1"
            assert data["is_known_device"] is False
            assert "session_id" in data
            assert "expires_at" in data
            mock.commit.assert_awaited()
        finally:
            _teardown()

    @pytest.mark.asyncio
    async def test_events_for_unknown_session(self):
        _setup_session()
        try:
            async with _client() as client:
                resp = await client.post(
                    "/fraud/sessions/missing/events",
                    json={"keystroke_timestamps_ms": [0, 120, 260]},
                )
            assert resp.status_code == 404
            body = resp.json()
            assert body["error"] == "session_not_found"
            assert "request_id" in body
        finally:
            _teardown()


class TestOrderCompletion:
    @pytest.mark.asyncio
    async def test_complete_order(self):
        _setup_session()
        try:
            async with _client() as client:
                resp = await client.post(
                    "/fraud/orders/ord-1/complete",
                    json={"user_id": "user-1", "amount": 84.5},
                )
            assert resp.status_code == 200
            data = resp.json()
            assert data["order_id"] == "ord-1"
            assert data["applied"] is True
            assert data["trust_score"]["score"] == 52
        finally:
            _teardown()


class TestTrustScore:
    @pytest.mark.asyncio
    async def test_unseen_user_gets_default_record(self):
        session = _setup_session()
        try:
            async with _client() as client:
                resp = await client.get("/fraud/trust/newcomer")
            assert resp.status_code == 200
            data = resp.json()
            assert data["user_id"] == "newcomer"
            assert data["score"] == 50
            assert data["band"] == "new"
            assert data["is_suspended"] is False
            session.add.assert_called_once()
            session.commit.assert_awaited_once()
        finally:
            _teardown()


# =========================================================================
# ADMIN
# =========================================================================


class TestReviewQueue:
    @pytest.mark.asyncio
    async def test_empty_queue(self):
        _setup_session()
        try:
            async with _client() as client:
                resp = await client.get("/fraud/signals", headers=ADMIN_HEADERS)
            assert resp.status_code == 200
            assert resp.json() == []
        finally:
            _teardown()

    @pytest.mark.asyncio
    async def test_limit_bounds(self):
        _setup_session()
        try:
            async with _client() as client:
                resp = await client.get("/fraud/signals?limit=0", headers=ADMIN_HEADERS)
            assert resp.status_code == 422
        finally:
            _teardown()

    @pytest.mark.asyncio
    async def test_resolve_unknown_signal(self):
        _setup_session()
        try:
            async with _client() as client:
                resp = await client.post(
                    "/fraud/signals/999/resolve",
                    json={"decision": "confirmed", "reviewer_id": "reviewer-1"},
                    headers=ADMIN_HEADERS,
                )
            assert resp.status_code == 404
            assert resp.json()["error"] == "signal_not_found"
        finally:
            _teardown()

    @pytest.mark.asyncio
    async def test_resolve_rejects_unknown_decision(self):
        _setup_session()
        try:
            async with _client() as client:
                resp = await client.post(
                    "/fraud/signals/1/resolve",
                    json={"decision": "maybe", "reviewer_id": "reviewer-1"},
                    headers=ADMIN_HEADERS,
                )
            assert resp.status_code == 422
        finally:
            _teardown()


class TestRules:
    @pytest.mark.asyncio
    async def test_list_rules_falls_back_to_defaults(self):
        _setup_session()
        try:
            async with _client() as client:
                resp = await client.get("/fraud/rules", headers=ADMIN_HEADERS)
            assert resp.status_code == 200
            rules = {r["rule_key"]: r for r in resp.json()}
            assert len(rules) == 14
            assert rules["device_headless"]["weight"] == 40
            assert rules["velocity_tx_count"]["weight"] == 60
            assert rules["amount_first"]["threshold_value"] == 500.0
        finally:
            _teardown()

    @pytest.mark.asyncio
    async def test_feedback(self):
        _setup_session()
        try:
            async with _client() as client:
                resp = await client.get("/fraud/rules/feedback", headers=ADMIN_HEADERS)
            assert resp.status_code == 200
            assert resp.json() == []
        finally:
            _teardown()

    @pytest.mark.asyncio
    async def test_update_unknown_rule(self):
        _setup_session()
        try:
            async with _client() as client:
                resp = await client.patch(
                    "/fraud/rules/nope", json={"weight": 5}, headers=ADMIN_HEADERS
                )
            assert resp.status_code == 404
            assert resp.json()["error"] == "rule_not_found"
        finally:
            _teardown()

    @pytest.mark.asyncio
    async def test_negative_weight_rejected(self):
        _setup_session()
        try:
            async with _client() as client:
                resp = await client.patch(
                    "/fraud/rules/velocity_tx_count", json={"weight": -5}, headers=ADMIN_HEADERS
                )
            assert resp.status_code == 422
        finally:
            _teardown()

    @pytest.mark.asyncio
    async def test_update_rule(self):
        _setup_session()
        try:
            async with _client() as client:
                resp = await client.patch(
                    "/fraud/rules/velocity_tx_count?updated_by=analyst-3",
                    json={"threshold_value": 8},
                    headers=ADMIN_HEADERS,
                )
            assert resp.status_code == 200
            assert resp.json()["threshold_value"] == 8
        finally:
            _teardown()


class TestReinstate:
    @pytest.mark.asyncio
    async def test_unknown_user_not_provisioned(self):
        mock = _setup_session()
        try:
            async with _client() as client:
                resp = await client.post(
                    "/fraud/trust/ghost/reinstate",
                    json={"admin_id": "admin-1"},
                    headers=ADMIN_HEADERS,
                )
            assert resp.status_code == 404
            mock.add.assert_not_called()
        finally:
            _teardown()
