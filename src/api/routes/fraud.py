"""Checkout fraud endpoints: assessment, telemetry, order outcomes and review."""

import secrets

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.consumers.order_consumer import record_outcome
from src.db.database import get_session
from src.domains.fraud.collector import SignalCollector
from src.domains.fraud.config import default_config
from src.domains.fraud.fingerprint import FingerprintRegistry
from src.domains.fraud.gate import DecisionGate
from src.domains.fraud.ledger import TrustLedger
from src.domains.fraud.models import (
    AssessRequest,
    AssessResponse,
    DetectionRule,
    FraudSignalView,
    OrderCompletedRequest,
    ReinstateRequest,
    ResolutionResult,
    ResolveRequest,
    RuleFeedback,
    RuleUpdate,
    SessionEventsRequest,
    SignalType,
    StartSessionRequest,
    TrustSnapshot,
)
from src.domains.fraud.rule_store import RuleStore
from src.domains.fraud.scorer import RiskScoringEngine
from src.domains.fraud.workbench import ReviewWorkbench

logger = structlog.get_logger()
router = APIRouter(prefix="/fraud", tags=["fraud"])

rule_store = RuleStore(config=default_config)
registry = FingerprintRegistry()
ledger = TrustLedger(config=default_config)
collector = SignalCollector(config=default_config, registry=registry)
gate = DecisionGate(
    config=default_config,
    collector=collector,
    engine=RiskScoringEngine(config=default_config, rule_store=rule_store, ledger=ledger),
    signal_topic=settings.signal_events_topic,
)
workbench = ReviewWorkbench(ledger=ledger)


async def require_admin(x_admin_token: str | None = Header(default=None)) -> str:
    if not x_admin_token or not secrets.compare_digest(x_admin_token, settings.admin_api_token):
        raise HTTPException(status_code=403, detail="Admin token required")
    return x_admin_token


# --- Checkout path ---


@router.post("/assess", response_model=AssessResponse)
async def assess_checkout(
    request: AssessRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),  # noqa: B008
) -> AssessResponse:
    response, audit = await gate.assess(session, request)
    background_tasks.add_task(gate.persist_assessment, audit)
    return response


@router.post("/sessions", status_code=201)
async def start_session(
    request: StartSessionRequest,
    session: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict:
    row = await collector.start_session(session, request.user_id, request.device_attributes)
    return {
        "session_id": row.id,
        "user_id": row.user_id,
        "is_known_device": bool(row.telemetry.get("is_known_device")),
        "expires_at": row.expires_at.isoformat(),
    }


@router.post("/sessions/{session_id}/events")
async def record_session_events(
    session_id: str,
    events: SessionEventsRequest,
    session: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict:
    row = await collector.record_events(session, session_id, events)
    return {
        "session_id": row.id,
        "pointer_samples": len(row.telemetry["pointer_samples"]),
        "keystrokes": len(row.telemetry["keystroke_timestamps_ms"]),
        "has_time_to_submit": row.telemetry.get("time_to_submit_ms") is not None,
    }


@router.post("/orders/{order_id}/complete")
async def complete_order(
    order_id: str,
    request: OrderCompletedRequest,
    session: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict:
    snapshot, applied = await record_outcome(
        session, ledger, collector, registry, order_id, request
    )
    return {"order_id": order_id, "applied": applied, "trust_score": snapshot.model_dump()}


@router.get("/trust/{user_id}", response_model=TrustSnapshot)
async def get_trust_score(
    user_id: str,
    session: AsyncSession = Depends(get_session),  # noqa: B008
) -> TrustSnapshot:
    # First lookup provisions the default record, same as a first checkout
    row = await ledger.get_or_create(session, user_id)
    await session.commit()
    return ledger.snapshot_row(row)


# --- Admin: review workbench, rules, trust ---


@router.get("/signals", response_model=list[FraudSignalView])
async def list_signals(
    signal_type: SignalType | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),  # noqa: B008
    _admin: str = Depends(require_admin),
) -> list[FraudSignalView]:
    rows = await workbench.queue(session, limit=limit, offset=offset, signal_type=signal_type)
    return [FraudSignalView.model_validate(row) for row in rows]


@router.get("/signals/{signal_id}", response_model=FraudSignalView)
async def get_signal(
    signal_id: int,
    session: AsyncSession = Depends(get_session),  # noqa: B008
    _admin: str = Depends(require_admin),
) -> FraudSignalView:
    return FraudSignalView.model_validate(await workbench.get_signal(session, signal_id))


@router.post("/signals/{signal_id}/resolve", response_model=ResolutionResult)
async def resolve_signal(
    signal_id: int,
    request: ResolveRequest,
    session: AsyncSession = Depends(get_session),  # noqa: B008
    _admin: str = Depends(require_admin),
) -> ResolutionResult:
    return await workbench.resolve(
        session, signal_id, request.decision, request.reviewer_id, request.notes
    )


@router.get("/rules", response_model=list[DetectionRule])
async def list_rules(
    session: AsyncSession = Depends(get_session),  # noqa: B008
    _admin: str = Depends(require_admin),
) -> list[DetectionRule]:
    return await rule_store.list_rules(session)


@router.get("/rules/feedback", response_model=list[RuleFeedback])
async def get_rule_feedback(
    session: AsyncSession = Depends(get_session),  # noqa: B008
    _admin: str = Depends(require_admin),
) -> list[RuleFeedback]:
    return await workbench.rule_feedback(session)


@router.patch("/rules/{rule_key}", response_model=DetectionRule)
async def update_rule(
    rule_key: str,
    changes: RuleUpdate,
    updated_by: str = Query(default="admin"),
    session: AsyncSession = Depends(get_session),  # noqa: B008
    _admin: str = Depends(require_admin),
) -> DetectionRule:
    return await rule_store.update_rule(session, rule_key, changes, updated_by)


@router.get("/trust/{user_id}/devices")
async def list_user_devices(
    user_id: str,
    session: AsyncSession = Depends(get_session),  # noqa: B008
    _admin: str = Depends(require_admin),
) -> dict:
    devices = await registry.list_devices(session, user_id)
    return {
        "user_id": user_id,
        "devices": [
            {
                "fingerprint_id": d.id,
                "fingerprint_hash": d.fingerprint_hash,
                "first_seen_at": d.first_seen_at.isoformat(),
                "last_seen_at": d.last_seen_at.isoformat(),
                "trust_flag": d.trust_flag,
            }
            for d in devices
        ],
    }


@router.post("/trust/{user_id}/reinstate", response_model=TrustSnapshot)
async def reinstate_user(
    user_id: str,
    request: ReinstateRequest,
    session: AsyncSession = Depends(get_session),  # noqa: B008
    _admin: str = Depends(require_admin),
) -> TrustSnapshot:
    # Reinstating an unknown user must not provision one
    await ledger.get(session, user_id)
    return await ledger.reinstate(session, user_id, request.admin_id, request.score)
