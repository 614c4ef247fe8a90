"""
Business Phase Lifecycle Service

Manages phase status transitions with:
  - Transition validation (PHASE_TRANSITIONS)
  - Single-active invariant (activation supersedes the current active phase)
  - Activation preview for operator confirmation
  - Capped content regeneration through the phase content generator
  - Auto-advance when every task of the active phase is validated
  - Audit log + smart alerts

Transitions:
  activate           pending → active   (current active → completed, "superseded")
  skip               pending | active → skipped   (administrative, reason required)
  complete/advance   active → completed, next pending → active   (all tasks validated)

Usage:
    from roadmap.services.phase_lifecycle import activate_phase, preview_activation

    preview = preview_activation(org_id, 3)      # show to the operator first
    result = activate_phase(org_id, 3, actor="ceo@acme.io")
"""

import logging
from datetime import date, datetime, timezone

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from roadmap.ai.phase_generator import PhaseContentGenerator
from roadmap.core.exceptions import ConflictError, PreconditionError, ValidationError
from roadmap.models import db
from roadmap.models.alert import raise_alert
from roadmap.models.audit import write_audit
from roadmap.models.phase import MAX_REGENERATIONS, PHASE_TRANSITIONS, validate_phase_transition
from roadmap.services import (
    okr_store,
    phase_generation_service,
    phase_repository,
    progression_service,
    task_ledger,
)
from roadmap.services.progress import pending_checklist_labels

logger = logging.getLogger(__name__)

DEFAULT_PREVIEW_LIMIT = 5


def get_available_transitions(phase) -> list[str]:
    """Statuses *phase* may move to next."""
    return list(PHASE_TRANSITIONS.get(phase.status, []))


def _audit(phase, action: str, actor: str, diff: dict) -> None:
    try:
        write_audit(
            entity_type="business_phase",
            entity_id=phase.id,
            action=action,
            actor=actor,
            organization_id=phase.organization_id,
            diff=diff,
        )
    except Exception:
        logger.warning("Audit log failed for %s — main flow unaffected", action, exc_info=True)


def _commit_transition(organization_id: int) -> None:
    """Commit the staged transition; concurrent writers surface as ConflictError."""
    try:
        db.session.commit()
    except (StaleDataError, IntegrityError) as exc:
        db.session.rollback()
        logger.warning(
            "Phase transition lost a concurrent write: %s", exc,
            extra={"organization_id": organization_id, "event_type": "phase.conflict"},
        )
        raise ConflictError("BusinessPhase", "status", "active") from exc
    except Exception:
        db.session.rollback()
        raise


def _verify_single_active(organization_id: int) -> None:
    active = phase_repository.get_active_phases(organization_id)
    if len(active) > 1:
        logger.error(
            "Post-commit check: %d active phases (%s)",
            len(active), [p.phase_number for p in active],
            extra={"organization_id": organization_id, "event_type": "invariant_violation"},
        )


def _complete(phase, actor: str, completion_kind: str, today: date) -> None:
    """Move an active phase to completed and flush (status write only)."""
    previous = phase.status
    phase.status = "completed"
    phase.actual_end = today
    if completion_kind == "finished":
        phase.progress_percentage = 100
    db.session.flush()
    _audit(phase, "phase.complete", actor, {
        "status": {"old": previous, "new": "completed"},
        "completion_kind": completion_kind,
        "progress_percentage": phase.progress_percentage,
    })


def _start(phase, actor: str, today: date) -> None:
    previous = phase.status
    phase.status = "active"
    phase.actual_start = today
    db.session.flush()
    _audit(phase, "phase.activate", actor, {"status": {"old": previous, "new": "active"}})


# ── Activation ───────────────────────────────────────────────────────────────


def build_activation_preview(current_active, target, limit: int = DEFAULT_PREVIEW_LIMIT) -> dict:
    """
    Confirmation data shown before activating *target*.

    The pending labels come from the CURRENT active phase: activating the
    target completes that phase regardless of its progress.

    Returns:
        {"current_phase", "target_phase", "current_progress",
         "pending_task_labels", "remaining_pending_count", "truncated", "truncation_marker"}
    """
    labels, remaining = ([], 0)
    if current_active is not None:
        labels, remaining = pending_checklist_labels(current_active.checklist or [], limit=limit)
    return {
        "current_phase": (
            {"phase_number": current_active.phase_number, "phase_name": current_active.phase_name}
            if current_active is not None else None
        ),
        "target_phase": {"phase_number": target.phase_number, "phase_name": target.phase_name},
        "current_progress": current_active.progress_percentage if current_active is not None else 0,
        "pending_task_labels": labels,
        "remaining_pending_count": remaining,
        "truncated": remaining > 0,
        "truncation_marker": f"+{remaining} more" if remaining else None,
    }


def preview_activation(organization_id: int, phase_number: int) -> dict:
    """Preview for activate_phase; same preconditions, no writes."""
    target = phase_repository.get_phase(organization_id, phase_number)
    if not validate_phase_transition(target.status, "active"):
        raise PreconditionError(
            f"Phase {phase_number} cannot be activated from status '{target.status}'",
            details={"status": target.status},
        )
    limit = current_app.config.get("ACTIVATION_PREVIEW_LIMIT", DEFAULT_PREVIEW_LIMIT)
    current = phase_repository.get_active_phase(organization_id)
    return build_activation_preview(current, target, limit=limit)


def activate_phase(organization_id: int, phase_number: int, *, actor: str = "system") -> dict:
    """
    Make *phase_number* the organization's active phase.

    Every currently active phase is marked completed first (superseded,
    whatever its progress). Deactivation is flushed before activation so the
    single-active index never sees two active rows; the whole change commits
    or rolls back as one unit.

    Returns:
        {"phase": {...}, "previous_phase_number": int | None}

    Raises:
        NotFoundError: no such phase.
        PreconditionError: target is not pending.
        ConflictError: a concurrent writer changed the phases first.
    """
    target = phase_repository.get_phase(organization_id, phase_number)
    if not validate_phase_transition(target.status, "active"):
        raise PreconditionError(
            f"Phase {phase_number} cannot be activated from status '{target.status}'",
            details={"status": target.status, "allowed": get_available_transitions(target)},
        )

    today = date.today()
    superseded = phase_repository.get_active_phases(organization_id)
    try:
        for phase in superseded:
            _complete(phase, actor, "superseded", today)
        _start(target, actor, today)
    except (StaleDataError, IntegrityError) as exc:
        db.session.rollback()
        raise ConflictError("BusinessPhase", "status", "active") from exc
    except Exception:
        db.session.rollback()
        raise
    _commit_transition(organization_id)
    _verify_single_active(organization_id)

    logger.info(
        "Phase activated (superseded: %s)", [p.phase_number for p in superseded] or "none",
        extra={"organization_id": organization_id, "phase_number": phase_number, "event_type": "phase.activate"},
    )
    return {
        "phase": target.to_dict(),
        "previous_phase_number": superseded[0].phase_number if superseded else None,
    }


def skip_phase(organization_id: int, phase_number: int, *, actor: str = "system", reason: str | None = None) -> dict:
    """Administrative override: pending or active → skipped. Never activates another phase."""
    phase = phase_repository.get_phase(organization_id, phase_number)
    if not reason or not reason.strip():
        raise ValidationError("reason is required to skip a phase")
    if not validate_phase_transition(phase.status, "skipped"):
        raise PreconditionError(
            f"Phase {phase_number} cannot be skipped from status '{phase.status}'",
            details={"status": phase.status, "allowed": get_available_transitions(phase)},
        )

    previous = phase.status
    phase.status = "skipped"
    phase.actual_end = date.today()
    try:
        db.session.flush()
    except StaleDataError as exc:
        db.session.rollback()
        raise ConflictError("BusinessPhase", "status", previous) from exc
    _audit(phase, "phase.skip", actor, {"status": {"old": previous, "new": "skipped"}, "reason": reason})
    _commit_transition(organization_id)

    logger.info(
        "Phase skipped from %s", previous,
        extra={"organization_id": organization_id, "phase_number": phase_number, "event_type": "phase.skip"},
    )
    return {"phase": phase.to_dict(), "previous_status": previous}


# ── Regeneration ─────────────────────────────────────────────────────────────


def regenerate_phase(organization_id: int, phase_number: int, *, actor: str = "system", generator=None) -> dict:
    """
    Replace a phase's objectives, checklist and playbook with generated content.

    Status and phase_number are preserved; progress is recomputed from the
    ledger afterwards. The generator is called before anything is touched, so
    a failed call leaves content and regeneration_count unchanged.

    Raises:
        NotFoundError: no such phase.
        PreconditionError: no regenerations remaining.
        GenerationFailure: generator failed or returned malformed content.
    """
    phase = phase_repository.get_phase(organization_id, phase_number)
    if phase.regenerations_remaining <= 0:
        raise PreconditionError(
            "No regenerations remaining",
            details={"regeneration_count": phase.regeneration_count},
        )

    generator = generator or PhaseContentGenerator.from_app()
    content = generator.regenerate_single_phase(organization_id, phase_number, current_phase=phase.to_dict())

    old_count = phase.regeneration_count or 0
    try:
        objectives = phase_generation_service.bind_objective_key_results(
            organization_id, content["objectives"], lambda: _okr_objective_id(organization_id),
        )
        checklist = phase_generation_service.bind_checklist_tasks(
            organization_id, phase_number, content["checklist"],
        )
        phase.phase_name = content.get("phase_name") or phase.phase_name
        phase.phase_description = content.get("phase_description") or phase.phase_description
        if content.get("duration_weeks"):
            phase.duration_weeks = content["duration_weeks"]
        phase.objectives = objectives["objectives"]
        phase.checklist = checklist["checklist"]
        phase.playbook = content.get("playbook") or {}
        phase.regeneration_count = old_count + 1
        phase.last_regenerated_at = datetime.now(timezone.utc)
        db.session.flush()

        progression_service.sync_phase(organization_id, phase_number)
        db.session.flush()
        _audit(phase, "phase.regenerate", actor, {
            "regeneration_count": {"old": old_count, "new": phase.regeneration_count},
            "tasks_created": checklist["created"],
            "tasks_removed": checklist["removed"],
            "key_results_created": objectives["created"],
        })
    except StaleDataError as exc:
        db.session.rollback()
        raise ConflictError("BusinessPhase", "version") from exc
    except Exception:
        db.session.rollback()
        raise
    _commit_transition(organization_id)

    logger.info(
        "Phase regenerated (%d/%d)", phase.regeneration_count, MAX_REGENERATIONS,
        extra={"organization_id": organization_id, "phase_number": phase_number, "event_type": "phase.regenerate"},
    )
    return {"phase": phase.to_dict(), "regenerations_remaining": phase.regenerations_remaining}


def _okr_objective_id(organization_id: int) -> int:
    return okr_store.ensure_quarter_objective(organization_id).id


# ── Completion check / auto-advance ──────────────────────────────────────────


def check_phase_completion(organization_id: int, *, actor: str = "system") -> dict:
    """
    Complete the active phase once every tagged task has a validated
    completion, then activate the next pending phase.

    Returns:
        {"completed": bool, "phase_number", "next_phase_number", "all_phases_completed", "task_stats"}
    """
    active = phase_repository.get_active_phase(organization_id)
    if active is None:
        return {"completed": False, "message": "No active phase"}

    stats = task_ledger.phase_task_stats(organization_id, active.phase_number)
    result = {
        "completed": False,
        "phase_number": active.phase_number,
        "next_phase_number": None,
        "all_phases_completed": False,
        "task_stats": stats.to_dict(),
    }
    if stats.total == 0 or stats.completed_validated < stats.total:
        return result

    today = date.today()
    next_phase = next(
        (p for p in phase_repository.list_phases(organization_id)
         if p.phase_number > active.phase_number and p.status == "pending"),
        None,
    )
    try:
        _complete(active, actor, "finished", today)
        if next_phase is not None:
            _start(next_phase, actor, today)
            raise_alert(
                organization_id, "phase_completed",
                f"Phase {active.phase_number} completed: {active.phase_name}",
                f"Phase {next_phase.phase_number} ({next_phase.phase_name}) is now active.",
                severity="opportunity", category="roadmap",
                payload={"completed_phase": active.phase_number, "next_phase": next_phase.phase_number},
            )
        else:
            raise_alert(
                organization_id, "all_phases_completed",
                "Roadmap completed",
                "Every phase of the roadmap is finished.",
                severity="opportunity", category="roadmap",
                payload={"completed_phase": active.phase_number},
            )
    except (StaleDataError, IntegrityError) as exc:
        db.session.rollback()
        raise ConflictError("BusinessPhase", "status", "active") from exc
    except Exception:
        db.session.rollback()
        raise
    _commit_transition(organization_id)
    _verify_single_active(organization_id)

    logger.info(
        "Phase completed; next: %s", next_phase.phase_number if next_phase else "none",
        extra={"organization_id": organization_id, "phase_number": active.phase_number,
               "event_type": "phase.complete"},
    )
    result.update({
        "completed": True,
        "next_phase_number": next_phase.phase_number if next_phase else None,
        "all_phases_completed": next_phase is None,
    })
    return result
