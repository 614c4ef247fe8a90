"""
Phase repository — persistence access for BusinessPhase rows.

All lookups are organization-scoped. Writes only add + flush; the calling
service owns the transaction boundary (commit / rollback).
"""

import logging

from sqlalchemy import select

from roadmap.core.exceptions import NotFoundError
from roadmap.models import db
from roadmap.models.phase import BusinessPhase

logger = logging.getLogger(__name__)


def list_phases(organization_id: int) -> list[BusinessPhase]:
    """All phases of an organization ordered by phase_number."""
    stmt = (
        select(BusinessPhase)
        .where(BusinessPhase.organization_id == organization_id)
        .order_by(BusinessPhase.phase_number)
    )
    return list(db.session.execute(stmt).scalars())


def get_phase(organization_id: int, phase_number: int) -> BusinessPhase:
    """Fetch one phase by number; NotFoundError when absent in this organization."""
    phase = find_phase(organization_id, phase_number)
    if phase is None:
        raise NotFoundError(
            resource="BusinessPhase", resource_id=phase_number, organization_id=organization_id,
        )
    return phase


def find_phase(organization_id: int, phase_number: int) -> BusinessPhase | None:
    stmt = select(BusinessPhase).where(
        BusinessPhase.organization_id == organization_id,
        BusinessPhase.phase_number == phase_number,
    )
    return db.session.execute(stmt).scalar_one_or_none()


def get_active_phases(organization_id: int) -> list[BusinessPhase]:
    """Every phase currently marked active (healthy data has at most one)."""
    stmt = (
        select(BusinessPhase)
        .where(
            BusinessPhase.organization_id == organization_id,
            BusinessPhase.status == "active",
        )
        .order_by(BusinessPhase.phase_number)
    )
    return list(db.session.execute(stmt).scalars())


def get_active_phase(organization_id: int) -> BusinessPhase | None:
    """The organization's active phase, derived by scanning status."""
    active = get_active_phases(organization_id)
    if len(active) > 1:
        logger.error(
            "Single-active invariant violated: %d active phases",
            len(active),
            extra={"organization_id": organization_id, "event_type": "invariant_violation"},
        )
    return active[0] if active else None


def upsert_phase(phase: BusinessPhase) -> BusinessPhase:
    """Stage a new or modified phase and flush it so ids/versions are assigned."""
    db.session.add(phase)
    db.session.flush()
    return phase
