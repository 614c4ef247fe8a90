"""
Business Roadmap Engine
SmartAlert model — organization notifications raised by the phase engine.
"""

from datetime import datetime, timezone

from roadmap.models import db
from roadmap.models.base import OrganizationModel

ALERT_TYPES = {"roadmap_generated", "phase_completed", "all_phases_completed"}

ALERT_SEVERITIES = {"info", "opportunity", "warning", "critical"}


class SmartAlert(OrganizationModel):
    """Actionable notification shown on the organization dashboard."""

    __tablename__ = "smart_alerts"

    id = db.Column(db.Integer, primary_key=True)
    alert_type = db.Column(db.String(40), nullable=False)
    severity = db.Column(db.String(20), nullable=False, default="info")
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, default="")
    source = db.Column(db.String(40), nullable=False, default="phase_system")
    category = db.Column(db.String(40), nullable=True)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    payload = db.Column(db.JSON, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "alert_type": self.alert_type,
            "severity": self.severity,
            "title": self.title,
            "message": self.message,
            "source": self.source,
            "category": self.category,
            "is_read": self.is_read,
            "payload": self.payload or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def raise_alert(
    organization_id: int,
    alert_type: str,
    title: str,
    message: str,
    *,
    severity: str = "info",
    category: str | None = None,
    payload: dict | None = None,
) -> SmartAlert:
    """Add an alert to the session. Caller owns the commit."""
    if alert_type not in ALERT_TYPES:
        raise ValueError(f"Unknown alert_type: {alert_type}")
    if severity not in ALERT_SEVERITIES:
        raise ValueError(f"Unknown severity: {severity}")
    alert = SmartAlert(
        organization_id=organization_id,
        alert_type=alert_type,
        severity=severity,
        title=title,
        message=message,
        category=category,
        payload=payload or {},
    )
    db.session.add(alert)
    return alert
