"""
Roadmap generation service — first-time creation of an organization's phases.

    generate_roadmap(org, actor)     generator → phases + tasks + key results
    bind_checklist_tasks(org, n, cl) give checklist items a ledger task each
    bind_objective_key_results(...)  give objectives a key result each

Phases are never deleted: once an organization has a roadmap, individual
phases are regenerated instead (see phase_lifecycle.regenerate_phase).
"""

from __future__ import annotations

import logging
from datetime import date, timedelta

from roadmap.ai.phase_generator import PhaseContentGenerator, resolve_methodology
from roadmap.core.exceptions import NotFoundError, PreconditionError
from roadmap.models import db
from roadmap.models.alert import raise_alert
from roadmap.models.audit import write_audit
from roadmap.models.okr import KeyResult
from roadmap.models.organization import Organization
from roadmap.models.phase import BusinessPhase
from roadmap.models.task import Task
from roadmap.services import okr_store, phase_repository, progression_service, task_ledger
from roadmap.services.helpers.scoped_queries import get_scoped_or_none
from roadmap.utils.helpers import commit_or_rollback

logger = logging.getLogger(__name__)

DEFAULT_DURATION_WEEKS = 6


def bind_checklist_tasks(organization_id: int, phase_number: int, checklist: list[dict]) -> dict:
    """Bind every checklist item of a phase to a Task tagged with *phase_number*.

    Existing phase tasks are reused by title. Phase tasks that no longer match
    any item are deleted unless the ledger holds completions for them.

    Returns:
        {"checklist": [...], "created": n, "removed": n}
    """
    existing = {t.title.strip().lower(): t for t in task_ledger.list_phase_tasks(organization_id, phase_number)}
    used_ids = set()
    created = 0
    bound = []
    for item in checklist:
        new_item = dict(item)
        key = new_item["task"].strip().lower()
        task = existing.get(key)
        if task is None or task.id in used_ids:
            task = Task(
                organization_id=organization_id,
                title=new_item["task"][:300],
                phase=phase_number,
                category=new_item.get("category"),
                functional_role=new_item.get("functional_role"),
            )
            db.session.add(task)
            db.session.flush()
            created += 1
        used_ids.add(task.id)
        new_item["task_id"] = task.id
        bound.append(new_item)

    removed = 0
    for task in existing.values():
        if task.id in used_ids:
            continue
        if task.completions.count() == 0:
            db.session.delete(task)
            removed += 1
    db.session.flush()
    return {"checklist": bound, "created": created, "removed": removed}


def bind_objective_key_results(organization_id: int, objectives: list[dict], objective_id_getter) -> dict:
    """Ensure each objective is bound to a key result of this organization.

    Objectives referencing an unknown key result are rebound to a new one.
    ``objective_id_getter`` returns the OKR objective id new key results go under.

    Returns:
        {"objectives": [...], "created": n}
    """
    bound = []
    created = 0
    for objective in objectives:
        new_obj = dict(objective)
        kr = get_scoped_or_none(KeyResult, new_obj.get("key_result_id"), organization_id=organization_id)
        if kr is None:
            kr = okr_store.create_key_result(
                organization_id,
                objective_id_getter(),
                title=new_obj["name"],
                target_value=new_obj["target"],
                current_value=new_obj.get("current") or 0,
                metric=new_obj.get("metric"),
            )
            created += 1
        new_obj["key_result_id"] = kr.id
        bound.append(new_obj)
    return {"objectives": bound, "created": created}


def generate_roadmap(organization_id: int, *, actor: str = "system", generator=None) -> dict:
    """
    Create the organization's roadmap from generated content.

    Phase 1 starts active, the rest pending. Estimated dates are chained by
    duration from today.

    Raises:
        NotFoundError: organization missing.
        PreconditionError: the organization already has phases.
        GenerationFailure: generator failed; nothing is written.
    """
    org = db.session.get(Organization, organization_id)
    if org is None:
        raise NotFoundError(resource="Organization", resource_id=organization_id)
    if phase_repository.list_phases(organization_id):
        raise PreconditionError(
            "Roadmap already generated; regenerate individual phases instead",
            details={"organization_id": organization_id},
        )

    generator = generator or PhaseContentGenerator.from_app()
    contents = generator.generate_phases(organization_id)
    methodology = resolve_methodology(org)

    today = date.today()
    okr_objective = None

    def _okr_objective_id():
        nonlocal okr_objective
        if okr_objective is None:
            okr_objective = okr_store.ensure_quarter_objective(organization_id, today)
        return okr_objective.id

    cursor = today
    tasks_created = 0
    krs_created = 0
    try:
        for content in contents:
            number = content["phase_number"]
            weeks = content.get("duration_weeks") or DEFAULT_DURATION_WEEKS
            objectives = bind_objective_key_results(organization_id, content["objectives"], _okr_objective_id)
            checklist = bind_checklist_tasks(organization_id, number, content["checklist"])
            krs_created += objectives["created"]
            tasks_created += checklist["created"]

            phase = BusinessPhase(
                organization_id=organization_id,
                phase_number=number,
                phase_name=content["phase_name"],
                phase_description=content.get("phase_description", ""),
                methodology=methodology,
                duration_weeks=weeks,
                estimated_start=cursor,
                estimated_end=cursor + timedelta(weeks=weeks),
                actual_start=today if number == 1 else None,
                status="active" if number == 1 else "pending",
                progress_percentage=0,
                regeneration_count=0,
                objectives=objectives["objectives"],
                checklist=checklist["checklist"],
                playbook=content.get("playbook") or {},
                generated_by_ai=True,
            )
            phase_repository.upsert_phase(phase)
            cursor = cursor + timedelta(weeks=weeks)

        progression_service.sync_all_phases(organization_id)

        raise_alert(
            organization_id,
            "roadmap_generated",
            "Your growth roadmap is ready",
            f"{len(contents)} phases generated with the "
            f"{'Lean Startup' if methodology == 'lean_startup' else 'Scaling Up'} methodology.",
            severity="opportunity",
            category="roadmap",
            payload={"phases": len(contents), "methodology": methodology},
        )
        write_audit(
            entity_type="roadmap",
            entity_id=organization_id,
            action="roadmap.generate",
            actor=actor,
            organization_id=organization_id,
            diff={
                "phases": {"old": 0, "new": len(contents)},
                "tasks_created": tasks_created,
                "key_results_created": krs_created,
            },
        )
    except Exception:
        db.session.rollback()
        raise
    commit_or_rollback("BusinessPhase")

    logger.info(
        "Roadmap generated: %d phases, %d tasks, %d key results",
        len(contents), tasks_created, krs_created,
        extra={"organization_id": organization_id, "event_type": "roadmap.generate"},
    )
    return {
        "methodology": methodology,
        "phases": [p.to_dict() for p in phase_repository.list_phases(organization_id)],
        "tasks_created": tasks_created,
        "key_results_created": krs_created,
    }
