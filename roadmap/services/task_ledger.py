"""
Task completion ledger — the authoritative record of finished work.

A completion counts toward phase progress only when BOTH flags hold:
``completed_by_user`` and ``validated_by_leader``. Phase checklists and
progress percentages are projections of this ledger; whenever a completion
is validated or revoked here, the owning phase is re-synced before commit,
so a read that follows the write always sees the new state.

Lifecycle of a completion:
    recorded (completed_by_user) → validated (validated_by_leader)
    validated → recorded                              (revoke)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select

from roadmap.core.exceptions import PreconditionError, ValidationError
from roadmap.models import db
from roadmap.models.audit import write_audit
from roadmap.models.okr import KeyResult
from roadmap.models.task import Task, TaskCompletion
from roadmap.services import okr_store
from roadmap.services.helpers.scoped_queries import get_scoped, get_scoped_or_none
from roadmap.services.progress import TaskStats
from roadmap.utils.helpers import commit_or_rollback, flush_or_rollback

logger = logging.getLogger(__name__)


def _counts(stmt):
    return stmt.where(
        TaskCompletion.completed_by_user.is_(True),
        TaskCompletion.validated_by_leader.is_(True),
    )


# ── Reads ────────────────────────────────────────────────────────────────────


def list_completions(
    organization_id: int,
    *,
    phase: int | None = None,
    task_ids=None,
    validated_only: bool = False,
) -> list[TaskCompletion]:
    """Completions of an organization, optionally narrowed to a phase or task set."""
    stmt = (
        select(TaskCompletion)
        .join(Task, Task.id == TaskCompletion.task_id)
        .where(TaskCompletion.organization_id == organization_id)
        .order_by(TaskCompletion.id)
    )
    if phase is not None:
        stmt = stmt.where(Task.phase == phase)
    if task_ids is not None:
        stmt = stmt.where(TaskCompletion.task_id.in_(list(task_ids)))
    if validated_only:
        stmt = _counts(stmt)
    return list(db.session.execute(stmt).scalars())


def validated_task_ids(organization_id: int, task_ids) -> set[int]:
    """Subset of *task_ids* with at least one counting completion."""
    ids = {i for i in task_ids if i is not None}
    if not ids:
        return set()
    stmt = _counts(
        select(TaskCompletion.task_id)
        .where(
            TaskCompletion.organization_id == organization_id,
            TaskCompletion.task_id.in_(ids),
        )
        .distinct()
    )
    return set(db.session.execute(stmt).scalars())


def phase_task_stats(organization_id: int, phase_number: int) -> TaskStats:
    """Tagged-task count and validated-task count for one phase.

    A task completed by several users still counts once.
    """
    total = db.session.execute(
        select(func.count(Task.id)).where(
            Task.organization_id == organization_id,
            Task.phase == phase_number,
        )
    ).scalar() or 0

    completed = db.session.execute(
        _counts(
            select(func.count(func.distinct(TaskCompletion.task_id)))
            .join(Task, Task.id == TaskCompletion.task_id)
            .where(
                Task.organization_id == organization_id,
                Task.phase == phase_number,
            )
        )
    ).scalar() or 0

    return TaskStats(total=total, completed_validated=completed)


def list_phase_tasks(organization_id: int, phase_number: int) -> list[Task]:
    stmt = (
        select(Task)
        .where(Task.organization_id == organization_id, Task.phase == phase_number)
        .order_by(Task.id)
    )
    return list(db.session.execute(stmt).scalars())


# ── Writes ───────────────────────────────────────────────────────────────────


def record_completion(organization_id: int, task_id: int, user_id: str) -> tuple[TaskCompletion, bool]:
    """Record that *user_id* finished a task. Idempotent per (task, user).

    Returns:
        (completion, created) — created is False when it already existed.
    """
    if not user_id:
        raise ValidationError("user_id is required")
    task = get_scoped(Task, task_id, organization_id=organization_id)

    existing = db.session.execute(
        select(TaskCompletion).where(
            TaskCompletion.task_id == task.id,
            TaskCompletion.user_id == str(user_id),
        )
    ).scalar_one_or_none()
    if existing is not None:
        if not existing.completed_by_user:
            existing.completed_by_user = True
            commit_or_rollback("TaskCompletion")
        return existing, False

    completion = TaskCompletion(
        organization_id=organization_id,
        task_id=task.id,
        user_id=str(user_id),
        completed_by_user=True,
    )
    db.session.add(completion)
    commit_or_rollback("TaskCompletion")
    logger.info(
        "Task completion recorded",
        extra={
            "organization_id": organization_id,
            "phase_number": task.phase,
            "event_type": "task_completion.record",
        },
    )
    return completion, True


def _task_counted_elsewhere(completion: TaskCompletion) -> bool:
    """True when another completion of the same task already counts."""
    stmt = _counts(
        select(func.count(TaskCompletion.id)).where(
            TaskCompletion.task_id == completion.task_id,
            TaskCompletion.id != completion.id,
        )
    )
    return (db.session.execute(stmt).scalar() or 0) > 0


def _push_contribution(task: Task, sign: int, actor: str, source: str):
    """Move the task's key result by ±kr_contribution. Returns the KR or None."""
    kr = get_scoped_or_none(KeyResult, task.key_result_id, organization_id=task.organization_id)
    if kr is None:
        return None
    new_value = (kr.current_value or 0) + sign * (task.kr_contribution or 0)
    okr_store.record_value_change(
        kr, new_value, source=source, actor=actor, notes=f"Task {task.id}: {task.title}"[:500],
    )
    return kr


def _resync_after_ledger_change(organization_id: int, task: Task, kr) -> list[int]:
    from roadmap.services import progression_service

    db.session.flush()
    synced = set()
    if task.phase is not None and progression_service.phase_exists(organization_id, task.phase):
        progression_service.sync_phase(organization_id, task.phase)
        synced.add(task.phase)
    if kr is not None:
        for phase in progression_service.sync_phases_for_key_result(organization_id, kr.id):
            synced.add(phase.phase_number)
    return sorted(synced)


def validate_completion(organization_id: int, completion_id: int, *, validator: str) -> dict:
    """Leader validation of a completion.

    The completion starts counting toward phase progress, the task's key
    result (if any) receives ``kr_contribution``, and affected phases are
    re-synced in the same transaction.

    Raises:
        NotFoundError: completion missing in this organization.
        PreconditionError: the user has not marked the task completed.
    """
    completion = get_scoped(TaskCompletion, completion_id, organization_id=organization_id)
    if completion.validated_by_leader:
        return {"completion": completion.to_dict(), "changed": False, "synced_phases": []}
    if not completion.completed_by_user:
        raise PreconditionError(
            "Completion has not been marked completed by the user",
            details={"completion_id": completion.id},
        )

    task = completion.task
    first_for_task = not _task_counted_elsewhere(completion)
    completion.validated_by_leader = True
    completion.validated_by = validator or "system"
    completion.validated_at = datetime.now(timezone.utc)

    kr = None
    if first_for_task:
        kr = _push_contribution(task, +1, validator, "task_completion")

    synced = _resync_after_ledger_change(organization_id, task, kr)
    flush_or_rollback("BusinessPhase")

    try:
        write_audit(
            entity_type="task_completion",
            entity_id=completion.id,
            action="task_completion.validate",
            actor=validator,
            organization_id=organization_id,
            diff={"validated_by_leader": {"old": False, "new": True}},
        )
    except Exception:
        logger.warning("Audit log failed for completion validation — main flow unaffected", exc_info=True)

    commit_or_rollback("BusinessPhase")
    logger.info(
        "Task completion validated",
        extra={
            "organization_id": organization_id,
            "phase_number": task.phase,
            "event_type": "task_completion.validate",
        },
    )
    return {"completion": completion.to_dict(), "changed": True, "synced_phases": synced}


def revoke_validation(organization_id: int, completion_id: int, *, actor: str) -> dict:
    """Undo a leader validation; inverse of validate_completion."""
    completion = get_scoped(TaskCompletion, completion_id, organization_id=organization_id)
    if not completion.validated_by_leader:
        return {"completion": completion.to_dict(), "changed": False, "synced_phases": []}

    task = completion.task
    previous_validator = completion.validated_by
    completion.validated_by_leader = False
    completion.validated_by = None
    completion.validated_at = None

    kr = None
    if not _task_counted_elsewhere(completion):
        kr = _push_contribution(task, -1, actor, "task_revocation")

    synced = _resync_after_ledger_change(organization_id, task, kr)
    flush_or_rollback("BusinessPhase")

    try:
        write_audit(
            entity_type="task_completion",
            entity_id=completion.id,
            action="task_completion.revoke",
            actor=actor,
            organization_id=organization_id,
            diff={
                "validated_by_leader": {"old": True, "new": False},
                "validated_by": {"old": previous_validator, "new": None},
            },
        )
    except Exception:
        logger.warning("Audit log failed for completion revocation — main flow unaffected", exc_info=True)

    commit_or_rollback("BusinessPhase")
    logger.info(
        "Task completion validation revoked",
        extra={
            "organization_id": organization_id,
            "phase_number": task.phase,
            "event_type": "task_completion.revoke",
        },
    )
    return {"completion": completion.to_dict(), "changed": True, "synced_phases": synced}
