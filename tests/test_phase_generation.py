"""
Roadmap generation tests (local-stub LLM provider).

Covers generate_roadmap end to end plus the generator's response parsing.
"""

import json
from unittest.mock import MagicMock

import pytest

from roadmap.ai.phase_generator import PhaseContentGenerator, resolve_methodology
from roadmap.core.exceptions import GenerationFailure, NotFoundError, PreconditionError
from roadmap.models import db
from roadmap.models.alert import SmartAlert
from roadmap.models.audit import AuditLog
from roadmap.models.okr import KeyResult, OKRObjective
from roadmap.models.phase import BusinessPhase
from roadmap.models.task import Task
from roadmap.services import phase_generation_service, phase_repository


def _raw_phase(number=1, **overrides):
    phase = {
        "phase_number": number,
        "phase_name": f"Phase {number}",
        "phase_description": "desc",
        "duration_weeks": 6,
        "objectives": [{"name": "Get leads", "metric": "leads", "current": 0, "target": 50}],
        "checklist": [{"task": "Interview 10 customers", "category": "validation"}],
        "playbook": {"how_to_start": "Start"},
    }
    phase.update(overrides)
    return phase


def _existing_key_result(org, target=100.0):
    objective = OKRObjective(organization_id=org.id, title="Company OKRs", quarter="Q1", year=2026)
    db.session.add(objective)
    db.session.flush()
    kr = KeyResult(organization_id=org.id, objective_id=objective.id, title="MRR", target_value=target)
    db.session.add(kr)
    db.session.commit()
    return kr


# ═════════════════════════════════════════════════════════════════════════════
# generate_roadmap
# ═════════════════════════════════════════════════════════════════════════════


class TestGenerateRoadmap:

    def test_creates_phases_first_active(self, organization):
        result = phase_generation_service.generate_roadmap(organization.id, actor="ceo")

        assert result["methodology"] == "lean_startup"
        phases = phase_repository.list_phases(organization.id)
        assert [p.phase_number for p in phases] == [1, 2, 3, 4]
        assert [p.status for p in phases] == ["active", "pending", "pending", "pending"]
        assert phases[0].actual_start is not None
        assert all(p.regeneration_count == 0 for p in phases)
        assert all(p.progress_percentage == 0 for p in phases)

    def test_estimated_dates_are_chained(self, organization):
        phase_generation_service.generate_roadmap(organization.id)
        phases = phase_repository.list_phases(organization.id)
        for prev, nxt in zip(phases, phases[1:]):
            assert nxt.estimated_start == prev.estimated_end

    def test_every_checklist_item_gets_a_task(self, organization):
        result = phase_generation_service.generate_roadmap(organization.id)

        assert result["tasks_created"] == 12
        for phase in phase_repository.list_phases(organization.id):
            tasks = {t.id: t for t in Task.query_for_organization(organization.id).filter_by(phase=phase.phase_number)}
            assert {i["task_id"] for i in phase.checklist} == set(tasks)

    def test_every_objective_gets_a_key_result(self, organization):
        result = phase_generation_service.generate_roadmap(organization.id)

        assert result["key_results_created"] == 4
        kr_ids = {kr.id for kr in KeyResult.query_for_organization(organization.id)}
        for phase in phase_repository.list_phases(organization.id):
            assert all(o["key_result_id"] in kr_ids for o in phase.objectives)

    def test_existing_key_result_is_reused(self, organization):
        kr = _existing_key_result(organization)

        result = phase_generation_service.generate_roadmap(organization.id)

        assert result["key_results_created"] == 3
        first = phase_repository.get_phase(organization.id, 1)
        assert first.objectives[0]["key_result_id"] == kr.id
        assert first.objectives[0]["target"] == kr.target_value

    def test_established_company_uses_scaling_up(self, other_organization):
        result = phase_generation_service.generate_roadmap(other_organization.id)
        assert result["methodology"] == "scaling_up"
        assert phase_repository.get_phase(other_organization.id, 1).phase_name == "Foundation & People"

    def test_raises_alert_and_audit(self, organization):
        phase_generation_service.generate_roadmap(organization.id, actor="ceo")
        alert = SmartAlert.query_for_organization(organization.id).one()
        assert alert.alert_type == "roadmap_generated"
        assert AuditLog.query.filter_by(action="roadmap.generate", actor="ceo").count() == 1

    def test_second_generation_is_rejected(self, organization):
        phase_generation_service.generate_roadmap(organization.id)
        with pytest.raises(PreconditionError):
            phase_generation_service.generate_roadmap(organization.id)
        assert BusinessPhase.query_for_organization(organization.id).count() == 4

    def test_unknown_organization(self):
        with pytest.raises(NotFoundError):
            phase_generation_service.generate_roadmap(4242)

    def test_generator_failure_writes_nothing(self, organization):
        generator = MagicMock()
        generator.generate_phases.side_effect = GenerationFailure("timeout")

        with pytest.raises(GenerationFailure):
            phase_generation_service.generate_roadmap(organization.id, generator=generator)

        assert BusinessPhase.query.count() == 0
        assert Task.query.count() == 0
        assert KeyResult.query.count() == 0

    def test_non_finite_target_is_a_failure_and_writes_nothing(self, organization):
        raw = _raw_phase(1, objectives=[{"name": "Get leads", "metric": "leads", "target": float("nan")}])
        generator = _generator_returning({"phases": [raw]}, phase_count=1)

        with pytest.raises(GenerationFailure):
            phase_generation_service.generate_roadmap(organization.id, generator=generator)

        assert BusinessPhase.query.count() == 0
        assert KeyResult.query.count() == 0


# ═════════════════════════════════════════════════════════════════════════════
# PhaseContentGenerator
# ═════════════════════════════════════════════════════════════════════════════


def _generator_returning(payload, phase_count=4):
    gateway = MagicMock()
    content = payload if isinstance(payload, str) else json.dumps(payload)
    gateway.chat.return_value = {"content": content}
    return PhaseContentGenerator(gateway=gateway, phase_count=phase_count)


class TestPhaseContentGenerator:

    def test_methodology_follows_business_stage(self, organization, other_organization):
        assert resolve_methodology(organization) == "lean_startup"
        assert resolve_methodology(other_organization) == "scaling_up"

    def test_phases_renumbered_by_position(self, organization):
        payload = {"phases": [_raw_phase(7), _raw_phase(3)]}
        phases = _generator_returning(payload, phase_count=2).generate_phases(organization.id)
        assert [p["phase_number"] for p in phases] == [1, 2]

    def test_too_few_phases_is_a_failure(self, organization):
        payload = {"phases": [_raw_phase(1)]}
        with pytest.raises(GenerationFailure):
            _generator_returning(payload, phase_count=4).generate_phases(organization.id)

    def test_code_fenced_json_is_accepted(self, organization):
        fenced = "```json\n" + json.dumps({"phases": [_raw_phase(1)]}) + "\n```"
        phases = _generator_returning(fenced, phase_count=1).generate_phases(organization.id)
        assert phases[0]["phase_name"] == "Phase 1"

    def test_checklist_given_as_json_string(self, organization):
        raw = _raw_phase(1, checklist=json.dumps([{"task": "Ship MVP"}]))
        phases = _generator_returning({"phases": [raw]}, phase_count=1).generate_phases(organization.id)
        assert phases[0]["checklist"][0]["task"] == "Ship MVP"

    def test_generated_checklist_is_never_pre_completed(self, organization):
        raw = _raw_phase(1, checklist=[{"task": "Ship", "completed": True, "task_id": 99}])
        phases = _generator_returning({"phases": [raw]}, phase_count=1).generate_phases(organization.id)
        assert phases[0]["checklist"][0]["completed"] is False
        assert phases[0]["checklist"][0]["task_id"] is None

    @pytest.mark.parametrize("raw", [
        _raw_phase(1, phase_name=""),
        _raw_phase(1, objectives="lots"),
        _raw_phase(1, objectives=[{"name": "Zero", "target": 0}]),
        _raw_phase(1, objectives=[{"name": "Unbounded", "target": float("nan")}]),
        _raw_phase(1, objectives=[{"name": "Unbounded", "target": float("inf")}]),
    ])
    def test_malformed_phase_is_a_failure(self, organization, raw):
        with pytest.raises(GenerationFailure):
            _generator_returning({"phases": [raw]}, phase_count=1).generate_phases(organization.id)

    def test_empty_reply_is_a_failure(self, organization):
        with pytest.raises(GenerationFailure):
            _generator_returning({"phases": []}, phase_count=1).generate_phases(organization.id)

    def test_regenerate_picks_requested_phase(self, organization):
        payload = {"phases": [_raw_phase(1), _raw_phase(2, phase_name="Second")]}
        content = _generator_returning(payload).regenerate_single_phase(organization.id, 2)
        assert content["phase_name"] == "Second"
        assert content["phase_number"] == 2

    def test_regenerate_without_matching_phase_fails(self, organization):
        payload = {"phases": [_raw_phase(1), _raw_phase(3)]}
        with pytest.raises(GenerationFailure):
            _generator_returning(payload).regenerate_single_phase(organization.id, 2)

    def test_okr_context_lists_key_results(self, organization):
        kr = _existing_key_result(organization)
        gateway = MagicMock()
        gateway.chat.return_value = {"content": json.dumps({"phases": [_raw_phase(1)]})}

        PhaseContentGenerator(gateway=gateway, phase_count=1).generate_phases(organization.id)

        messages = gateway.chat.call_args.args[0]
        assert f"KR ID: {kr.id}" in messages[-1]["content"]
        assert "METHODOLOGY: lean_startup" in messages[-1]["content"]

    def test_unknown_organization(self):
        with pytest.raises(NotFoundError):
            _generator_returning({"phases": [_raw_phase(1)]}).generate_phases(999)
