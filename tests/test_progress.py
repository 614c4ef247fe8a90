"""
Unit tests for roadmap.services.progress — pure aggregation functions.

No database access: inputs are plain dicts / TaskStats values.
"""

import pytest

from roadmap.services.progress import (
    TaskStats,
    apply_key_results_to_objectives,
    apply_ledger_to_checklist,
    compute_objective_completion,
    compute_objective_percentage,
    compute_overall_progress,
    compute_phase_progress,
    pending_checklist_labels,
)


# ═════════════════════════════════════════════════════════════════════════════
# compute_phase_progress
# ═════════════════════════════════════════════════════════════════════════════


class TestPhaseProgress:

    def test_four_of_ten_validated_is_forty(self):
        assert compute_phase_progress({}, TaskStats(total=10, completed_validated=4)) == 40

    def test_no_tagged_tasks_is_zero(self):
        assert compute_phase_progress({}, TaskStats(total=0, completed_validated=0)) == 0

    def test_all_validated_is_hundred(self):
        assert compute_phase_progress({}, TaskStats(total=3, completed_validated=3)) == 100

    def test_rounds_half_up(self):
        # 1/8 = 12.5%
        assert compute_phase_progress({}, TaskStats(total=8, completed_validated=1)) == 13

    def test_rounds_down_below_half(self):
        # 1/3 = 33.33%
        assert compute_phase_progress({}, TaskStats(total=3, completed_validated=1)) == 33

    def test_never_exceeds_hundred(self):
        assert compute_phase_progress({}, TaskStats(total=2, completed_validated=5)) == 100

    def test_stored_checklist_state_is_ignored(self):
        phase = {"checklist": [{"task": "a", "completed": True}], "progress_percentage": 90}
        assert compute_phase_progress(phase, TaskStats(total=4, completed_validated=1)) == 25

    @pytest.mark.parametrize("total,done", [(1, 0), (7, 3), (9, 9), (11, 5), (100, 37)])
    def test_always_within_bounds(self, total, done):
        value = compute_phase_progress({}, TaskStats(total=total, completed_validated=done))
        assert 0 <= value <= 100


# ═════════════════════════════════════════════════════════════════════════════
# compute_overall_progress
# ═════════════════════════════════════════════════════════════════════════════


class TestOverallProgress:

    def test_empty_is_zero(self):
        assert compute_overall_progress([]) == 0
        assert compute_overall_progress(None) == 0

    def test_mean_of_phase_progress(self):
        phases = [{"progress_percentage": 100}, {"progress_percentage": 40}, {"progress_percentage": 0}]
        assert compute_overall_progress(phases) == 47

    def test_mean_rounds_half_up(self):
        phases = [{"progress_percentage": 50}, {"progress_percentage": 51}]
        assert compute_overall_progress(phases) == 51

    def test_accepts_objects_with_attributes(self):
        class _Phase:
            def __init__(self, pct):
                self.progress_percentage = pct

        assert compute_overall_progress([_Phase(20), _Phase(40)]) == 30

    def test_is_stable_across_calls(self):
        phases = [{"progress_percentage": 33}, {"progress_percentage": 67}, {"progress_percentage": 10}]
        assert compute_overall_progress(phases) == compute_overall_progress(phases)


# ═════════════════════════════════════════════════════════════════════════════
# Objectives
# ═════════════════════════════════════════════════════════════════════════════


class TestObjectiveCompletion:

    def test_complete_when_current_reaches_target(self):
        assert compute_objective_completion({"current": 10, "target": 10}) is True

    def test_incomplete_below_target(self):
        assert compute_objective_completion({"current": 9, "target": 10}) is False

    def test_non_positive_target_counts_as_complete(self):
        assert compute_objective_completion({"current": 0, "target": 0}) is True
        assert compute_objective_completion({"current": 0, "target": -5}) is True

    def test_percentage_is_clamped(self):
        assert compute_objective_percentage({"current": 30, "target": 10}) == 100
        assert compute_objective_percentage({"current": -3, "target": 10}) == 0

    def test_percentage_of_zero_target_is_hundred(self):
        assert compute_objective_percentage({"current": 0, "target": 0}) == 100

    def test_percentage_linear(self):
        assert compute_objective_percentage({"current": 3, "target": 12}) == 25

    @pytest.mark.parametrize("current,target,expected", [
        (float("inf"), 10, 100),
        (float("-inf"), 10, 0),
        (float("nan"), 10, 0),
        (float("inf"), float("inf"), 0),
    ])
    def test_percentage_of_non_finite_values_stays_in_bounds(self, current, target, expected):
        assert compute_objective_percentage({"current": current, "target": target}) == expected


# ═════════════════════════════════════════════════════════════════════════════
# Projections
# ═════════════════════════════════════════════════════════════════════════════


class TestLedgerProjection:

    def test_bound_items_mirror_validated_ids(self):
        checklist = [
            {"task": "a", "completed": False, "task_id": 1},
            {"task": "b", "completed": True, "task_id": 2},
            {"task": "c", "completed": True, "task_id": None},
        ]
        synced = apply_ledger_to_checklist(checklist, {1})
        assert [i["completed"] for i in synced] == [True, False, True]

    def test_input_is_not_mutated(self):
        checklist = [{"task": "a", "completed": False, "task_id": 1}]
        apply_ledger_to_checklist(checklist, {1})
        assert checklist[0]["completed"] is False

    def test_key_result_values_copied_into_objectives(self):
        objectives = [
            {"name": "Leads", "current": 0, "target": 10, "key_result_id": 7},
            {"name": "Orphan", "current": 2, "target": 5, "key_result_id": 99},
        ]
        synced = apply_key_results_to_objectives(objectives, {7: {"current": 6, "target": 20}})
        assert synced[0]["current"] == 6 and synced[0]["target"] == 20
        assert synced[1]["current"] == 2 and synced[1]["target"] == 5


class TestPendingLabels:

    def test_first_labels_and_remaining_count(self):
        checklist = [{"task": f"t{i}", "completed": i % 2 == 0} for i in range(10)]
        labels, remaining = pending_checklist_labels(checklist, limit=3)
        assert labels == ["t1", "t3", "t5"]
        assert remaining == 2

    def test_nothing_pending(self):
        assert pending_checklist_labels([{"task": "x", "completed": True}]) == ([], 0)
