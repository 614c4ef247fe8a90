"""
Business Roadmap Engine
Task and task completion ledger models.

Models:
    - Task:            unit of roadmap work tagged with a phase number
    - TaskCompletion:  ledger entry — a user's completion of a task, plus the
                       leader validation flag that makes it count

Architecture:
    Organization ──1:N──▶ Task ──1:N──▶ TaskCompletion
    Task.key_result_id ──N:1──▶ KeyResult
    BusinessPhase.checklist[*].task_id ──weak──▶ Task

Only completions with ``completed_by_user`` AND ``validated_by_leader`` count
toward phase progress and checklist state.
"""

from datetime import datetime, timezone

from roadmap.models import db
from roadmap.models.base import OrganizationModel


class Task(OrganizationModel):
    """Roadmap task. ``phase`` is the phase number, not a FK."""

    __tablename__ = "tasks"
    __table_args__ = (
        db.Index("ix_tasks_org_phase", "organization_id", "phase"),
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    phase = db.Column(db.Integer, nullable=True, comment="Phase number this task advances")
    category = db.Column(db.String(50), nullable=True)
    functional_role = db.Column(db.String(50), nullable=True)
    user_id = db.Column(db.String(64), nullable=True, comment="Assignee (external identity)")

    key_result_id = db.Column(
        db.Integer, db.ForeignKey("key_results.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    kr_contribution = db.Column(
        db.Float, nullable=False, default=1.0,
        comment="Amount pushed into the key result when a completion is validated",
    )

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    completions = db.relationship(
        "TaskCompletion", backref="task", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "title": self.title,
            "description": self.description,
            "phase": self.phase,
            "category": self.category,
            "functional_role": self.functional_role,
            "user_id": self.user_id,
            "key_result_id": self.key_result_id,
            "kr_contribution": self.kr_contribution,
        }

    def __repr__(self):
        return f"<Task {self.id}: phase={self.phase}>"


class TaskCompletion(OrganizationModel):
    """One user's completion of a task. Validated by a leader to count."""

    __tablename__ = "task_completions"
    __table_args__ = (
        db.UniqueConstraint("task_id", "user_id", name="uq_task_completion_task_user"),
    )

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(db.String(64), nullable=False)
    completed_by_user = db.Column(db.Boolean, nullable=False, default=True)
    completed_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    validated_by_leader = db.Column(db.Boolean, nullable=False, default=False)
    validated_by = db.Column(db.String(150), nullable=True)
    validated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "task_id": self.task_id,
            "phase": self.task.phase if self.task else None,
            "user_id": self.user_id,
            "completed_by_user": self.completed_by_user,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "validated_by_leader": self.validated_by_leader,
            "validated_by": self.validated_by,
            "validated_at": self.validated_at.isoformat() if self.validated_at else None,
        }

    def __repr__(self):
        return f"<TaskCompletion {self.id}: task={self.task_id} validated={self.validated_by_leader}>"
