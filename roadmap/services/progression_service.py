"""
Phase progression service — keeps stored phase state consistent with the
task completion ledger and the Key Result store.

    sync_phase(org, n)                 rebuild objectives/checklist/progress of one phase
    sync_all_phases(org)               the same for every phase of an organization
    sync_phases_for_key_result(org,k)  phases whose objectives are bound to KR k
    get_roadmap(org)                   read model for the roadmap screen

Sync functions only flush; the caller commits. Stored JSON arrays are always
replaced by fresh lists so SQLAlchemy detects the change.
"""

from __future__ import annotations

import logging

from roadmap.core.exceptions import DataInconsistencyWarning
from roadmap.models.phase import PHASE_TRANSITIONS, BusinessPhase
from roadmap.services import okr_store, phase_repository, task_ledger
from roadmap.services.progress import (
    apply_key_results_to_objectives,
    apply_ledger_to_checklist,
    compute_objective_completion,
    compute_objective_percentage,
    compute_overall_progress,
    compute_phase_progress,
)

logger = logging.getLogger(__name__)


def phase_exists(organization_id: int, phase_number: int) -> bool:
    return phase_repository.find_phase(organization_id, phase_number) is not None


def _sync(phase: BusinessPhase) -> BusinessPhase:
    org_id = phase.organization_id
    objectives = list(phase.objectives or [])
    checklist = list(phase.checklist or [])

    kr_values = okr_store.key_result_values(org_id, (o.get("key_result_id") for o in objectives))
    new_objectives = apply_key_results_to_objectives(objectives, kr_values)

    validated = task_ledger.validated_task_ids(org_id, (i.get("task_id") for i in checklist))
    new_checklist = apply_ledger_to_checklist(checklist, validated)

    stats = task_ledger.phase_task_stats(org_id, phase.phase_number)
    if stats.total == 0:
        logger.warning(
            "%s: phase %d has no tagged tasks; progress stays at 0",
            DataInconsistencyWarning.__name__,
            phase.phase_number,
            extra={
                "organization_id": org_id,
                "phase_number": phase.phase_number,
                "event_type": "data_inconsistency",
            },
        )
    progress = compute_phase_progress(phase, stats)

    # Untouched rows keep their version so concurrent writers are not bumped
    if new_objectives != objectives:
        phase.objectives = new_objectives
    if new_checklist != checklist:
        phase.checklist = new_checklist
    if phase.progress_percentage != progress:
        phase.progress_percentage = progress

    phase_repository.upsert_phase(phase)
    logger.debug(
        "Phase synced: %d/%d tasks validated → %d%%",
        stats.completed_validated, stats.total, progress,
        extra={"organization_id": org_id, "phase_number": phase.phase_number, "event_type": "phase.sync"},
    )
    return phase


def sync_phase(organization_id: int, phase_number: int) -> BusinessPhase:
    """Recompute one phase from the ledger and the KR store (flush only).

    Raises:
        NotFoundError: no such phase in this organization.
    """
    return _sync(phase_repository.get_phase(organization_id, phase_number))


def sync_all_phases(organization_id: int) -> list[BusinessPhase]:
    return [_sync(p) for p in phase_repository.list_phases(organization_id)]


def sync_phases_for_key_result(organization_id: int, key_result_id: int) -> list[BusinessPhase]:
    """Resync every phase holding an objective bound to *key_result_id*."""
    bound = [
        p for p in phase_repository.list_phases(organization_id)
        if any(o.get("key_result_id") == key_result_id for o in (p.objectives or []))
    ]
    return [_sync(p) for p in bound]


# ── Read model ───────────────────────────────────────────────────────────────


def _phase_view(phase: BusinessPhase) -> dict:
    data = phase.to_dict()
    data["objectives"] = [
        {
            **o,
            "is_complete": compute_objective_completion(o),
            "percentage": compute_objective_percentage(o),
        }
        for o in phase.objectives or []
    ]
    checklist = phase.checklist or []
    data["checklist_completed"] = sum(1 for i in checklist if i.get("completed"))
    data["checklist_total"] = len(checklist)
    data["can_activate"] = phase.status == "pending"
    data["is_terminal"] = phase.is_terminal
    data["can_regenerate"] = phase.regenerations_remaining > 0
    data["available_transitions"] = list(PHASE_TRANSITIONS.get(phase.status, []))
    return data


def get_roadmap(organization_id: int) -> dict:
    """Roadmap read model. Does not write; stored progress is returned as-is."""
    phases = phase_repository.list_phases(organization_id)
    active = next((p for p in phases if p.status == "active"), None)
    okrs_ready = okr_store.has_generated_okrs(organization_id)
    return {
        "organization_id": organization_id,
        "phases": [_phase_view(p) for p in phases],
        "total_phases": len(phases),
        "active_phase": _phase_view(active) if active else None,
        "current_phase_number": active.phase_number if active else 1,
        "overall_progress": compute_overall_progress(phases),
        "has_generated_okrs": okrs_ready,
        # Objectives can only move once key results exist to drive them
        "allow_objective_progress": okrs_ready,
    }


def get_phase_detail(organization_id: int, phase_number: int) -> dict:
    phase = phase_repository.get_phase(organization_id, phase_number)
    detail = _phase_view(phase)
    detail["task_stats"] = task_ledger.phase_task_stats(organization_id, phase_number).to_dict()
    return detail


def get_okr_status(organization_id: int) -> dict:
    """Key result progress for the OKR gate of the roadmap screen."""
    key_results = okr_store.list_key_results(organization_id)
    bound_ids = set()
    for phase in phase_repository.list_phases(organization_id):
        bound_ids.update(o.get("key_result_id") for o in phase.objectives or [])
    return {
        "has_generated_okrs": bool(key_results),
        "key_results": [
            {
                **kr.to_dict(),
                "progress": okr_store.calculate_kr_progress(kr),
                "bound_to_phase": kr.id in bound_ids,
            }
            for kr in key_results
        ],
    }
