"""
Auto-advance tests for check_phase_completion.

The active phase completes only when every tagged task has a validated
completion; the next pending phase then becomes active and an alert is raised.
"""

from roadmap.models import db
from roadmap.models.alert import SmartAlert
from roadmap.models.audit import AuditLog
from roadmap.models.phase import BusinessPhase
from roadmap.models.task import Task, TaskCompletion
from roadmap.services import phase_lifecycle, phase_repository


def _phase(org, number, status):
    p = BusinessPhase(
        organization_id=org.id, phase_number=number, phase_name=f"Phase {number}",
        status=status, objectives=[], checklist=[],
    )
    db.session.add(p)
    db.session.flush()
    return p


def _tasks(org, phase_number, count, validated):
    for i in range(count):
        t = Task(organization_id=org.id, title=f"T{phase_number}.{i}", phase=phase_number)
        db.session.add(t)
        db.session.flush()
        if i < validated:
            db.session.add(TaskCompletion(
                organization_id=org.id, task_id=t.id, user_id="u-1",
                completed_by_user=True, validated_by_leader=True,
            ))
    db.session.flush()


def _statuses(org):
    db.session.expire_all()
    return [p.status for p in phase_repository.list_phases(org.id)]


class TestCheckPhaseCompletion:

    def test_no_active_phase(self, organization):
        _phase(organization, 1, "completed")
        db.session.commit()
        result = phase_lifecycle.check_phase_completion(organization.id)
        assert result == {"completed": False, "message": "No active phase"}

    def test_incomplete_phase_stays_active(self, organization):
        _phase(organization, 1, "active")
        _phase(organization, 2, "pending")
        _tasks(organization, 1, count=3, validated=2)
        db.session.commit()

        result = phase_lifecycle.check_phase_completion(organization.id)

        assert result["completed"] is False
        assert result["task_stats"] == {"total": 3, "completed_validated": 2}
        assert _statuses(organization) == ["active", "pending"]

    def test_phase_without_tasks_never_auto_completes(self, organization):
        _phase(organization, 1, "active")
        db.session.commit()
        assert phase_lifecycle.check_phase_completion(organization.id)["completed"] is False

    def test_unvalidated_completions_do_not_finish_phase(self, organization):
        _phase(organization, 1, "active")
        _phase(organization, 2, "pending")
        _tasks(organization, 1, count=2, validated=0)
        for t in Task.query.all():
            db.session.add(TaskCompletion(organization_id=organization.id, task_id=t.id, user_id="u-1"))
        db.session.commit()

        assert phase_lifecycle.check_phase_completion(organization.id)["completed"] is False

    def test_advances_to_next_pending_phase(self, organization):
        _phase(organization, 1, "active")
        _phase(organization, 2, "skipped")
        _phase(organization, 3, "pending")
        _tasks(organization, 1, count=2, validated=2)
        db.session.commit()

        result = phase_lifecycle.check_phase_completion(organization.id, actor="scheduler")

        assert result["completed"] is True
        assert result["phase_number"] == 1
        assert result["next_phase_number"] == 3
        assert result["all_phases_completed"] is False
        assert _statuses(organization) == ["completed", "skipped", "active"]
        assert phase_repository.get_phase(organization.id, 1).progress_percentage == 100

        alert = SmartAlert.query_for_organization(organization.id).one()
        assert alert.alert_type == "phase_completed"
        assert alert.payload == {"completed_phase": 1, "next_phase": 3}

    def test_last_phase_completes_roadmap(self, organization):
        _phase(organization, 1, "completed")
        _phase(organization, 2, "active")
        _tasks(organization, 2, count=1, validated=1)
        db.session.commit()

        result = phase_lifecycle.check_phase_completion(organization.id)

        assert result["all_phases_completed"] is True
        assert result["next_phase_number"] is None
        assert _statuses(organization) == ["completed", "completed"]
        assert SmartAlert.query.one().alert_type == "all_phases_completed"

    def test_completion_is_audited_as_finished(self, organization):
        _phase(organization, 1, "active")
        _phase(organization, 2, "pending")
        _tasks(organization, 1, count=1, validated=1)
        db.session.commit()

        phase_lifecycle.check_phase_completion(organization.id)

        complete = AuditLog.query.filter_by(action="phase.complete").one()
        assert complete.diff["completion_kind"] == "finished"
        assert AuditLog.query.filter_by(action="phase.activate").count() == 1
