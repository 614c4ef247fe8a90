"""
Business Roadmap Engine
Business phase domain model.

Models:
    - BusinessPhase: one stage of an organization's growth roadmap, with
      embedded objectives, checklist and playbook (JSON columns).

Architecture:
    Organization ──1:N──▶ BusinessPhase   (unique per phase_number)
    BusinessPhase.objectives[*].key_result_id ──weak──▶ KeyResult
    BusinessPhase.checklist[*].task_id        ──weak──▶ Task / TaskCompletion

Lifecycle states:
    BusinessPhase:  pending → active → completed
                    pending → skipped | active → skipped   (administrative)

The embedded objective / checklist arrays are a denormalized projection of
the Key Result store and the task completion ledger. They are rewritten only
by the progression service (sync) and the content generator (regeneration).
"""

import math
from datetime import datetime, timezone

from roadmap.models import db
from roadmap.models.base import OrganizationModel


# ── Constants ────────────────────────────────────────────────────────────────

PHASE_STATUSES = {"pending", "active", "completed", "skipped"}

TERMINAL_PHASE_STATUSES = {"completed", "skipped"}

MAX_REGENERATIONS = 2


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

PHASE_TRANSITIONS = {
    "pending":   ["active", "skipped"],
    "active":    ["completed", "skipped"],
    "completed": [],
    "skipped":   [],
}


def validate_phase_transition(old_status, new_status):
    """Return True if BusinessPhase status transition is valid."""
    return new_status in PHASE_TRANSITIONS.get(old_status, [])


# ── Embedded value normalisation ─────────────────────────────────────────────


def _as_number(value, default=0):
    # NaN and infinities are treated as missing
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def normalize_objective(raw: dict) -> dict:
    """Coerce a generator/DB objective into the canonical stored shape.

    The generator emits ``linked_kr_id``; stored objectives use
    ``key_result_id``.
    """
    key_result_id = raw.get("key_result_id", raw.get("linked_kr_id"))
    return {
        "name": str(raw.get("name") or "").strip(),
        "metric": raw.get("metric") or "custom",
        "current": _as_number(raw.get("current"), 0),
        "target": _as_number(raw.get("target"), 0),
        "key_result_id": int(key_result_id) if str(key_result_id or "").isdigit() else None,
    }


def normalize_checklist_item(raw: dict) -> dict:
    """Coerce a generator/DB checklist item into the canonical stored shape."""
    task_id = raw.get("task_id", raw.get("linked_task_id"))
    return {
        "task": str(raw.get("task") or "").strip(),
        "completed": bool(raw.get("completed", False)),
        "category": raw.get("category"),
        "functional_role": raw.get("functional_role"),
        "assigned_to": raw.get("assigned_to"),
        "task_id": int(task_id) if str(task_id or "").isdigit() else None,
    }


# ── BusinessPhase ────────────────────────────────────────────────────────────


class BusinessPhase(OrganizationModel):
    """
    One stage of a growth roadmap.

    Business rules:
    - At most one phase per organization is ``active``.
    - ``progress_percentage`` is derived by the progression service and never
      accepted from request payloads.
    - ``regeneration_count`` is capped at MAX_REGENERATIONS.
    - ``version`` is the optimistic-concurrency token; concurrent writers on
      the same row surface as StaleDataError on flush.
    """

    __tablename__ = "business_phases"
    __table_args__ = (
        db.UniqueConstraint(
            "organization_id", "phase_number", name="uq_business_phase_org_number",
        ),
        db.Index("ix_business_phases_org_status", "organization_id", "status"),
        # At most one active phase per organization
        db.Index(
            "uq_business_phase_single_active",
            "organization_id",
            unique=True,
            sqlite_where=db.text("status = 'active'"),
            postgresql_where=db.text("status = 'active'"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    phase_number = db.Column(db.Integer, nullable=False)
    phase_name = db.Column(db.String(200), nullable=False)
    phase_description = db.Column(db.Text, default="")
    methodology = db.Column(
        db.String(30),
        nullable=False,
        default="lean_startup",
        comment="lean_startup | scaling_up",
    )
    duration_weeks = db.Column(db.Integer, nullable=True)
    estimated_start = db.Column(db.Date, nullable=True)
    estimated_end = db.Column(db.Date, nullable=True)
    actual_start = db.Column(db.Date, nullable=True)
    actual_end = db.Column(db.Date, nullable=True)

    status = db.Column(
        db.String(20),
        nullable=False,
        default="pending",
        comment="pending | active | completed | skipped",
    )
    progress_percentage = db.Column(db.Integer, nullable=False, default=0, comment="0-100, derived")
    regeneration_count = db.Column(db.Integer, nullable=False, default=0)
    last_regenerated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    objectives = db.Column(db.JSON, nullable=False, default=list)
    checklist = db.Column(db.JSON, nullable=False, default=list)
    playbook = db.Column(db.JSON, nullable=True)

    generated_by_ai = db.Column(db.Boolean, default=True)
    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def regenerations_remaining(self) -> int:
        return max(0, MAX_REGENERATIONS - (self.regeneration_count or 0))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PHASE_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "phase_number": self.phase_number,
            "phase_name": self.phase_name,
            "phase_description": self.phase_description,
            "methodology": self.methodology,
            "duration_weeks": self.duration_weeks,
            "estimated_start": self.estimated_start.isoformat() if self.estimated_start else None,
            "estimated_end": self.estimated_end.isoformat() if self.estimated_end else None,
            "actual_start": self.actual_start.isoformat() if self.actual_start else None,
            "actual_end": self.actual_end.isoformat() if self.actual_end else None,
            "status": self.status,
            "progress_percentage": self.progress_percentage,
            "regeneration_count": self.regeneration_count,
            "regenerations_remaining": self.regenerations_remaining,
            "last_regenerated_at": (
                self.last_regenerated_at.isoformat() if self.last_regenerated_at else None
            ),
            "objectives": list(self.objectives or []),
            "checklist": list(self.checklist or []),
            "playbook": self.playbook,
            "generated_by_ai": self.generated_by_ai,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<BusinessPhase {self.organization_id}#{self.phase_number}: {self.status}>"
