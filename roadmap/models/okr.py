"""
Business Roadmap Engine
OKR domain models.

Models:
    - OKRObjective:     qualitative goal owning a set of key results
    - KeyResult:        numeric start / current / target metric
    - KeyResultCheckIn: append-only history of key result value changes

Architecture:
    Organization ──1:N──▶ OKRObjective ──1:N──▶ KeyResult ──1:N──▶ KeyResultCheckIn
    Task.key_result_id ──N:1──▶ KeyResult   (validated completions push value)

Phase objectives reference key results by id only; the KeyResult row is the
source of truth for an objective's current / target values.
"""

from datetime import datetime, timezone

from roadmap.models import db
from roadmap.models.base import OrganizationModel


# ── Constants ────────────────────────────────────────────────────────────────

METRIC_TYPES = {"number", "percentage", "currency", "boolean", "milestone"}

CHECK_IN_SOURCES = {"check_in", "task_completion", "task_revocation"}


class OKRObjective(OrganizationModel):
    """Quarterly objective grouping key results."""

    __tablename__ = "okr_objectives"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    quarter = db.Column(db.String(2), nullable=True, comment="Q1 | Q2 | Q3 | Q4")
    year = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="active")
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    key_results = db.relationship(
        "KeyResult", backref="objective", lazy="dynamic",
        cascade="all, delete-orphan", order_by="KeyResult.id",
    )

    def to_dict(self, include_children=False):
        result = {
            "id": self.id,
            "organization_id": self.organization_id,
            "title": self.title,
            "description": self.description,
            "quarter": self.quarter,
            "year": self.year,
            "status": self.status,
        }
        if include_children:
            result["key_results"] = [kr.to_dict() for kr in self.key_results]
        return result

    def __repr__(self):
        return f"<OKRObjective {self.id}: {self.title}>"


class KeyResult(OrganizationModel):
    """Numeric key result. ``current_value`` moves via check-ins and validated tasks."""

    __tablename__ = "key_results"

    id = db.Column(db.Integer, primary_key=True)
    objective_id = db.Column(
        db.Integer, db.ForeignKey("okr_objectives.id", ondelete="CASCADE"), nullable=False,
    )
    title = db.Column(db.String(300), nullable=False)
    metric_type = db.Column(
        db.String(20),
        nullable=False,
        default="number",
        comment="number | percentage | currency | boolean | milestone",
    )
    start_value = db.Column(db.Float, nullable=False, default=0.0)
    current_value = db.Column(db.Float, nullable=False, default=0.0)
    target_value = db.Column(db.Float, nullable=False)
    unit = db.Column(db.String(30), default="")
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    check_ins = db.relationship(
        "KeyResultCheckIn", backref="key_result", lazy="dynamic",
        cascade="all, delete-orphan", order_by="KeyResultCheckIn.id",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "objective_id": self.objective_id,
            "title": self.title,
            "metric_type": self.metric_type,
            "start_value": self.start_value,
            "current_value": self.current_value,
            "target_value": self.target_value,
            "unit": self.unit,
        }

    def __repr__(self):
        return f"<KeyResult {self.id}: {self.current_value}/{self.target_value}>"


class KeyResultCheckIn(OrganizationModel):
    """Immutable record of one key result value change."""

    __tablename__ = "key_result_check_ins"

    id = db.Column(db.Integer, primary_key=True)
    key_result_id = db.Column(
        db.Integer, db.ForeignKey("key_results.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    value = db.Column(db.Float, nullable=False)
    previous_value = db.Column(db.Float, nullable=False)
    source = db.Column(
        db.String(20),
        nullable=False,
        default="check_in",
        comment="check_in | task_completion | task_revocation",
    )
    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(150), nullable=False, default="system")
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "key_result_id": self.key_result_id,
            "value": self.value,
            "previous_value": self.previous_value,
            "source": self.source,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
