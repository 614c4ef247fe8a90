"""
Phase progress aggregation — pure functions.

Nothing here touches the database or the session. Callers fetch the inputs
(task stats from the ledger, key result values from the OKR store, phase
rows from the repository) and persist the results.

    compute_phase_progress(phase, stats)      -> 0..100
    compute_overall_progress(phases)          -> 0..100
    compute_objective_completion(objective)   -> bool
    compute_objective_percentage(objective)   -> 0..100 (display)
    apply_ledger_to_checklist(checklist, ids) -> new checklist list
    apply_key_results_to_objectives(objs, kr) -> new objectives list
"""

from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class TaskStats:
    """Counts behind a phase's progress figure."""
    total: int
    completed_validated: int

    def to_dict(self) -> dict:
        return {"total": self.total, "completed_validated": self.completed_validated}


def _clamp_percentage(value: float) -> int:
    # Half-up rounding: 12.5 -> 13 (round() would give 12)
    if math.isnan(value):
        return 0
    if math.isinf(value):
        return 100 if value > 0 else 0
    return max(0, min(100, int(math.floor(value + 0.5))))


def _field(obj, name, default=None):
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def compute_phase_progress(phase, stats: TaskStats) -> int:
    """Percentage of the phase's tagged tasks with a validated completion.

    Returns 0 when the phase has no tagged tasks. The ledger counts are
    authoritative; stored checklist or objective state on ``phase`` is ignored.
    """
    if stats.total <= 0:
        return 0
    return _clamp_percentage(100 * stats.completed_validated / stats.total)


def compute_overall_progress(phases) -> int:
    """Arithmetic mean of every phase's stored progress, rounded. 0 for no phases."""
    phases = list(phases or [])
    if not phases:
        return 0
    total = sum(_field(p, "progress_percentage", 0) or 0 for p in phases)
    return _clamp_percentage(total / len(phases))


def compute_objective_completion(objective) -> bool:
    """``current >= target``; a non-positive target counts as complete."""
    target = _field(objective, "target", 0) or 0
    current = _field(objective, "current", 0) or 0
    if target <= 0:
        return True
    return current >= target


def compute_objective_percentage(objective) -> int:
    """Display percentage for an objective, clamped to 0..100.

    A non-positive target renders as 100 rather than dividing by it.
    """
    target = _field(objective, "target", 0) or 0
    current = _field(objective, "current", 0) or 0
    if target <= 0:
        return 100
    return _clamp_percentage(100 * current / target)


def apply_ledger_to_checklist(checklist: list[dict], validated_task_ids: set[int]) -> list[dict]:
    """Return a new checklist whose bound items mirror the ledger.

    Items without a ``task_id`` keep their stored ``completed`` value.
    """
    synced = []
    for item in checklist or []:
        new_item = dict(item)
        task_id = new_item.get("task_id")
        if task_id is not None:
            new_item["completed"] = task_id in validated_task_ids
        synced.append(new_item)
    return synced


def apply_key_results_to_objectives(objectives: list[dict], key_results: dict[int, dict]) -> list[dict]:
    """Return new objectives with current/target copied from bound key results.

    ``key_results`` maps key_result_id → {"current": ..., "target": ...}.
    Objectives whose key result is unbound or missing keep their values.
    """
    synced = []
    for objective in objectives or []:
        new_obj = dict(objective)
        kr = key_results.get(new_obj.get("key_result_id"))
        if kr is not None:
            new_obj["current"] = kr["current"]
            new_obj["target"] = kr["target"]
        synced.append(new_obj)
    return synced


def pending_checklist_labels(checklist: list[dict], limit: int = 5) -> tuple[list[str], int]:
    """First *limit* incomplete checklist labels plus the count left out."""
    pending = [item.get("task", "") for item in checklist or [] if not item.get("completed")]
    return pending[:limit], max(0, len(pending) - limit)
