"""
Key Result store tests: OKR gate, check-ins, progress math, metric mapping.
"""

from datetime import date
from types import SimpleNamespace

import pytest

from roadmap.core.exceptions import NotFoundError, ValidationError
from roadmap.models import db
from roadmap.models.audit import AuditLog
from roadmap.models.okr import KeyResult, KeyResultCheckIn, OKRObjective
from roadmap.models.phase import BusinessPhase
from roadmap.services import okr_store, phase_repository, progression_service


def _key_result(org, *, title="Leads", target=100.0, current=0.0, start=0.0, metric_type="number"):
    objective = okr_store.ensure_quarter_objective(org.id, date(2026, 2, 1))
    kr = KeyResult(
        organization_id=org.id, objective_id=objective.id, title=title, metric_type=metric_type,
        start_value=start, current_value=current, target_value=target,
    )
    db.session.add(kr)
    db.session.commit()
    return kr


def _phase_bound_to(org, kr, number=1):
    phase = BusinessPhase(
        organization_id=org.id, phase_number=number, phase_name=f"Phase {number}",
        status="active" if number == 1 else "pending",
        objectives=[{"name": kr.title, "metric": "leads", "current": 0, "target": 1, "key_result_id": kr.id}],
        checklist=[],
    )
    db.session.add(phase)
    db.session.commit()
    return phase


# ═════════════════════════════════════════════════════════════════════════════
# OKR gate
# ═════════════════════════════════════════════════════════════════════════════


class TestOkrGate:

    def test_no_key_results_means_gate_closed(self, organization):
        db.session.add(BusinessPhase(
            organization_id=organization.id, phase_number=1, phase_name="P1", status="active",
            objectives=[
                {"name": "A", "current": 1, "target": 5, "key_result_id": None},
                {"name": "B", "current": 0, "target": 3, "key_result_id": None},
            ],
            checklist=[],
        ))
        db.session.commit()

        assert okr_store.has_generated_okrs(organization.id) is False
        roadmap = progression_service.get_roadmap(organization.id)
        assert roadmap["allow_objective_progress"] is False
        objectives = roadmap["phases"][0]["objectives"]
        assert [o["is_complete"] for o in objectives] == [False, False]
        assert [o["percentage"] for o in objectives] == [20, 0]

    def test_gate_opens_with_a_key_result(self, organization):
        _key_result(organization)
        assert okr_store.has_generated_okrs(organization.id) is True
        assert okr_store.count_key_results(organization.id) == 1

    def test_gate_is_per_organization(self, organization, other_organization):
        _key_result(organization)
        assert okr_store.has_generated_okrs(other_organization.id) is False


# ═════════════════════════════════════════════════════════════════════════════
# Objective progress / check-ins
# ═════════════════════════════════════════════════════════════════════════════


class TestCheckIn:

    def test_objective_progress_reads_key_result(self, organization):
        kr = _key_result(organization, target=40, current=10)
        assert okr_store.get_objective_progress(kr.id, organization_id=organization.id) == {
            "current": 10, "target": 40,
        }

    def test_objective_progress_is_scoped(self, organization, other_organization):
        kr = _key_result(organization)
        with pytest.raises(NotFoundError):
            okr_store.get_objective_progress(kr.id, organization_id=other_organization.id)

    def test_check_in_syncs_bound_phase_objectives(self, organization):
        kr = _key_result(organization, target=50)
        _phase_bound_to(organization, kr, 1)
        _phase_bound_to(organization, kr, 2)

        result = okr_store.check_in(organization.id, kr.id, 25, actor="lead", notes="weekly")

        assert result["synced_phases"] == [1, 2]
        assert result["check_in"]["previous_value"] == 0.0
        db.session.expire_all()
        for number in (1, 2):
            objective = phase_repository.get_phase(organization.id, number).objectives[0]
            assert objective["current"] == 25.0
            assert objective["target"] == 50.0

    def test_check_in_is_recorded_and_audited(self, organization):
        kr = _key_result(organization)
        okr_store.check_in(organization.id, kr.id, "12.5", actor="lead")

        entry = KeyResultCheckIn.query.one()
        assert entry.value == 12.5 and entry.source == "check_in"
        assert AuditLog.query.filter_by(action="key_result.check_in").count() == 1

    def test_non_numeric_value_rejected(self, organization):
        kr = _key_result(organization)
        with pytest.raises(ValidationError):
            okr_store.check_in(organization.id, kr.id, "a lot")

    @pytest.mark.parametrize("value", ["inf", "-inf", "nan", float("inf")])
    def test_non_finite_value_rejected(self, organization, value):
        kr = _key_result(organization, current=7.0)
        _phase_bound_to(organization, kr)

        with pytest.raises(ValidationError):
            okr_store.check_in(organization.id, kr.id, value)

        db.session.expire_all()
        assert db.session.get(KeyResult, kr.id).current_value == 7.0
        assert KeyResultCheckIn.query.count() == 0
        assert progression_service.get_roadmap(organization.id)["phases"][0]["objectives"][0]["current"] == 0

    def test_unknown_source_rejected(self, organization):
        kr = _key_result(organization)
        with pytest.raises(ValueError):
            okr_store.record_value_change(kr, 3, source="import")


# ═════════════════════════════════════════════════════════════════════════════
# Progress math & metric mapping
# ═════════════════════════════════════════════════════════════════════════════


def _kr(metric_type="number", start=0, current=0, target=100):
    return SimpleNamespace(metric_type=metric_type, start_value=start, current_value=current, target_value=target)


class TestKeyResultProgress:

    @pytest.mark.parametrize("kr,expected", [
        (_kr(current=50), 50),
        (_kr(start=100, current=150, target=200), 50),
        (_kr(current=250), 100),
        (_kr(start=10, current=5, target=20), 0),
        (_kr(start=5, current=5, target=5), 0),
        (_kr("boolean", current=1, target=1), 100),
        (_kr("boolean", current=0, target=1), 0),
        (_kr("milestone", current=70, target=100), 70),
        (_kr("milestone", current=140, target=100), 100),
    ])
    def test_calculate_kr_progress(self, kr, expected):
        assert okr_store.calculate_kr_progress(kr) == expected

    @pytest.mark.parametrize("metric,expected", [
        ("leads", ("number", "leads")),
        ("revenue", ("currency", "€")),
        ("conversions", ("percentage", "%")),
        ("milestone", ("milestone", "units")),
        (None, ("number", "units")),
        ("weird", ("number", "units")),
    ])
    def test_map_metric(self, metric, expected):
        assert okr_store.map_metric(metric) == expected


class TestQuarterObjective:

    def test_created_once_per_quarter(self, organization):
        first = okr_store.ensure_quarter_objective(organization.id, date(2026, 5, 2))
        again = okr_store.ensure_quarter_objective(organization.id, date(2026, 6, 30))
        other_quarter = okr_store.ensure_quarter_objective(organization.id, date(2026, 7, 1))

        assert first.id == again.id
        assert first.quarter == "Q2" and first.year == 2026
        assert other_quarter.quarter == "Q3"
        assert OKRObjective.query_for_organization(organization.id).count() == 2
