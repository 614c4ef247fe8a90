"""
Key Result store — the OKR side of phase objective progress.

Phase objectives never move on their own: a KeyResult's ``current_value``
changes through a check-in or a validated task completion, and the
progression service copies the new value into every phase objective bound
to that key result.

Usage:
    from roadmap.services import okr_store

    okr_store.has_generated_okrs(organization_id)          # gate for the UI
    okr_store.get_objective_progress(kr_id, organization_id=org_id)
    okr_store.check_in(org_id, kr_id, value=42, actor="lead@acme.io")
"""

from __future__ import annotations

import logging
import math
from datetime import date

from sqlalchemy import func, select

from roadmap.core.exceptions import ValidationError
from roadmap.models import db
from roadmap.models.audit import write_audit
from roadmap.models.okr import CHECK_IN_SOURCES, METRIC_TYPES, KeyResult, KeyResultCheckIn, OKRObjective
from roadmap.services.helpers.scoped_queries import get_scoped
from roadmap.utils.helpers import commit_or_rollback, flush_or_rollback

logger = logging.getLogger(__name__)

# Generator metric vocabulary → key result metric type / unit
_METRIC_TYPE_MAP = {
    "leads": "number",
    "revenue": "currency",
    "users": "number",
    "conversions": "percentage",
    "custom": "number",
    "percentage": "percentage",
    "money": "currency",
    "count": "number",
}

_METRIC_UNIT_MAP = {
    "leads": "leads",
    "revenue": "€",
    "users": "users",
    "conversions": "%",
    "percentage": "%",
    "money": "€",
    "custom": "units",
    "count": "units",
}


# ── Reads ────────────────────────────────────────────────────────────────────


def count_key_results(organization_id: int) -> int:
    return db.session.execute(
        select(func.count(KeyResult.id)).where(KeyResult.organization_id == organization_id)
    ).scalar() or 0


def has_generated_okrs(organization_id: int) -> bool:
    """Read-only gate: objectives can only progress once key results exist."""
    return count_key_results(organization_id) > 0


def get_objective_progress(key_result_id: int, *, organization_id: int) -> dict:
    """Current/target pair of one key result, as consumed by phase objectives."""
    kr = get_scoped(KeyResult, key_result_id, organization_id=organization_id)
    return {"current": kr.current_value, "target": kr.target_value}


def key_result_values(organization_id: int, key_result_ids) -> dict[int, dict]:
    """Bulk form of get_objective_progress for the ids that still exist."""
    ids = {i for i in key_result_ids if i is not None}
    if not ids:
        return {}
    rows = db.session.execute(
        select(KeyResult).where(
            KeyResult.organization_id == organization_id,
            KeyResult.id.in_(ids),
        )
    ).scalars()
    return {kr.id: {"current": kr.current_value, "target": kr.target_value} for kr in rows}


def list_key_results(organization_id: int) -> list[KeyResult]:
    stmt = (
        select(KeyResult)
        .where(KeyResult.organization_id == organization_id)
        .order_by(KeyResult.id)
    )
    return list(db.session.execute(stmt).scalars())


def calculate_kr_progress(kr) -> int:
    """Start→target progress of a key result, 0..100.

    boolean:   100 once current reaches target, else 0
    milestone: current is already a percentage
    others:    linear between start and target; 0 when start == target
    """
    start = kr.start_value or 0
    current = kr.current_value or 0
    target = kr.target_value or 0

    if kr.metric_type == "boolean":
        return 100 if current >= target else 0
    if kr.metric_type == "milestone":
        return int(min(100, max(0, current)))
    if target == start:
        return 0
    progress = (current - start) / (target - start) * 100
    return int(round(min(100, max(0, progress))))


# ── Writes ───────────────────────────────────────────────────────────────────


def map_metric(metric: str | None) -> tuple[str, str]:
    """Generator metric keyword → (metric_type, unit)."""
    key = (metric or "").lower()
    # Native metric types (boolean, milestone, ...) pass through unchanged
    metric_type = _METRIC_TYPE_MAP.get(key, key if key in METRIC_TYPES else "number")
    return metric_type, _METRIC_UNIT_MAP.get(key, "units")


def ensure_quarter_objective(organization_id: int, today: date | None = None) -> OKRObjective:
    """Find or create the organization's roadmap objective for the current quarter."""
    today = today or date.today()
    quarter = f"Q{(today.month - 1) // 3 + 1}"
    objective = db.session.execute(
        select(OKRObjective).where(
            OKRObjective.organization_id == organization_id,
            OKRObjective.quarter == quarter,
            OKRObjective.year == today.year,
        ).limit(1)
    ).scalar_one_or_none()
    if objective is None:
        objective = OKRObjective(
            organization_id=organization_id,
            title=f"Roadmap phase objectives - {quarter} {today.year}",
            description="Created from the generated business phases",
            quarter=quarter,
            year=today.year,
            status="active",
        )
        db.session.add(objective)
        db.session.flush()
    return objective


def create_key_result(
    organization_id: int,
    objective_id: int,
    *,
    title: str,
    target_value: float,
    current_value: float = 0.0,
    metric: str | None = None,
) -> KeyResult:
    """Stage a key result for a phase objective. Caller owns the commit."""
    metric_type, unit = map_metric(metric)
    kr = KeyResult(
        organization_id=organization_id,
        objective_id=objective_id,
        title=title[:300],
        metric_type=metric_type,
        start_value=0.0,
        current_value=current_value or 0.0,
        target_value=target_value,
        unit=unit,
    )
    db.session.add(kr)
    db.session.flush()
    return kr


def record_value_change(
    kr: KeyResult,
    new_value: float,
    *,
    source: str,
    actor: str = "system",
    notes: str | None = None,
) -> KeyResultCheckIn:
    """Move a key result's current value and append the check-in row (no commit)."""
    if source not in CHECK_IN_SOURCES:
        raise ValueError(f"Unknown check-in source: {source}")
    entry = KeyResultCheckIn(
        organization_id=kr.organization_id,
        key_result_id=kr.id,
        value=new_value,
        previous_value=kr.current_value,
        source=source,
        notes=notes,
        created_by=actor,
    )
    kr.current_value = new_value
    db.session.add(entry)
    return entry


def check_in(
    organization_id: int,
    key_result_id: int,
    value,
    *,
    actor: str = "system",
    notes: str | None = None,
) -> dict:
    """Record a manual key result check-in and resync every bound phase.

    Returns:
        {"key_result": {...}, "check_in": {...}, "synced_phases": [phase_number, ...]}

    Raises:
        NotFoundError: key result missing in this organization.
        ValidationError: value is not a finite number.
    """
    from roadmap.services import progression_service

    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ValidationError("value must be numeric", details={"value": value})
    if not math.isfinite(value):
        raise ValidationError("value must be a finite number", details={"value": str(value)})

    kr = get_scoped(KeyResult, key_result_id, organization_id=organization_id)
    previous = kr.current_value
    entry = record_value_change(kr, value, source="check_in", actor=actor, notes=notes)
    db.session.flush()

    synced = progression_service.sync_phases_for_key_result(organization_id, kr.id)
    flush_or_rollback("KeyResult")

    try:
        write_audit(
            entity_type="key_result",
            entity_id=kr.id,
            action="key_result.check_in",
            actor=actor,
            organization_id=organization_id,
            diff={"current_value": {"old": previous, "new": value}},
        )
    except Exception:
        logger.warning("Audit log failed for key_result check-in — main flow unaffected", exc_info=True)

    commit_or_rollback("KeyResult")
    logger.info(
        "Key result check-in",
        extra={"organization_id": organization_id, "event_type": "key_result.check_in"},
    )
    return {
        "key_result": kr.to_dict(),
        "check_in": entry.to_dict(),
        "synced_phases": [p.phase_number for p in synced],
    }
