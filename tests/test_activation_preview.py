"""
Tests for the activation confirmation preview.

The preview lists pending checklist labels of the CURRENT active phase
(the phase that activation will complete), never of the target.
"""

import pytest

from roadmap.core.exceptions import PreconditionError
from roadmap.models import db
from roadmap.models.phase import BusinessPhase
from roadmap.services import phase_lifecycle


def _checklist(prefix, done, pending):
    items = [{"task": f"{prefix} done {i}", "completed": True, "task_id": None} for i in range(done)]
    items += [{"task": f"{prefix} open {i}", "completed": False, "task_id": None} for i in range(pending)]
    return items


def _phase(org, number, status, checklist=None, progress=0):
    p = BusinessPhase(
        organization_id=org.id,
        phase_number=number,
        phase_name=f"Phase {number}",
        status=status,
        progress_percentage=progress,
        objectives=[],
        checklist=checklist or [],
    )
    db.session.add(p)
    db.session.flush()
    return p


class TestBuildPreview:

    def test_labels_come_from_current_active_phase(self, organization):
        current = _phase(organization, 1, "active", _checklist("current", 1, 2), progress=33)
        target = _phase(organization, 2, "pending", _checklist("target", 0, 4))

        preview = phase_lifecycle.build_activation_preview(current, target)

        assert preview["current_phase"] == {"phase_number": 1, "phase_name": "Phase 1"}
        assert preview["target_phase"] == {"phase_number": 2, "phase_name": "Phase 2"}
        assert preview["current_progress"] == 33
        assert preview["pending_task_labels"] == ["current open 0", "current open 1"]
        assert preview["truncated"] is False
        assert preview["truncation_marker"] is None

    def test_truncates_to_limit_with_marker(self, organization):
        current = _phase(organization, 1, "active", _checklist("current", 0, 8))
        target = _phase(organization, 2, "pending")

        preview = phase_lifecycle.build_activation_preview(current, target, limit=5)

        assert len(preview["pending_task_labels"]) == 5
        assert preview["remaining_pending_count"] == 3
        assert preview["truncated"] is True
        assert preview["truncation_marker"] == "+3 more"

    def test_no_active_phase(self, organization):
        target = _phase(organization, 2, "pending")
        preview = phase_lifecycle.build_activation_preview(None, target)
        assert preview["current_phase"] is None
        assert preview["pending_task_labels"] == []
        assert preview["current_progress"] == 0


class TestPreviewActivation:

    def test_uses_configured_limit(self, app, organization):
        _phase(organization, 1, "active", _checklist("current", 0, 7))
        _phase(organization, 2, "pending")
        db.session.commit()

        assert app.config["ACTIVATION_PREVIEW_LIMIT"] == 5
        preview = phase_lifecycle.preview_activation(organization.id, 2)
        assert len(preview["pending_task_labels"]) == 5
        assert preview["truncation_marker"] == "+2 more"

    def test_preview_does_not_write(self, organization):
        _phase(organization, 1, "active")
        _phase(organization, 2, "pending")
        db.session.commit()

        phase_lifecycle.preview_activation(organization.id, 2)

        db.session.expire_all()
        statuses = [p.status for p in BusinessPhase.query_for_organization(organization.id)
                    .order_by(BusinessPhase.phase_number)]
        assert statuses == ["active", "pending"]

    def test_rejects_non_pending_target(self, organization):
        _phase(organization, 1, "active")
        db.session.commit()
        with pytest.raises(PreconditionError):
            phase_lifecycle.preview_activation(organization.id, 1)
