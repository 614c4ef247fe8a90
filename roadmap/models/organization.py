"""
Business Roadmap Engine
Organization model — the tenant root.

Every roadmap artifact (phases, OKRs, tasks, completions, alerts) is owned
by exactly one Organization. The onboarding columns are the business facts
the phase content generator turns into a prompt context.
"""

from datetime import datetime, timezone

from roadmap.models import db


class Organization(db.Model):
    """A customer company using the roadmap engine."""

    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    # Onboarding facts (consumed by the content generator)
    industry = db.Column(db.String(100), nullable=True)
    business_type = db.Column(db.String(50), nullable=True)
    business_stage = db.Column(
        db.String(30),
        nullable=True,
        comment="idea | startup | growth | consolidated",
    )
    company_size = db.Column(
        db.String(20),
        nullable=True,
        comment="solo | 2-5 | 6-20 | 21-50 | 51-200 | 200+",
    )
    business_description = db.Column(db.Text, default="")
    main_objectives = db.Column(db.Text, default="")
    biggest_challenge = db.Column(db.Text, default="")

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ── Relationships ────────────────────────────────────────────────────
    phases = db.relationship(
        "BusinessPhase", backref="organization", lazy="dynamic",
        cascade="all, delete-orphan", order_by="BusinessPhase.phase_number",
    )

    @property
    def is_startup(self) -> bool:
        """Early-stage companies get a Lean Startup roadmap."""
        return (
            self.business_stage == "startup"
            or self.company_size in ("solo", "2-5")
            or self.business_type == "startup"
        )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "industry": self.industry,
            "business_type": self.business_type,
            "business_stage": self.business_stage,
            "company_size": self.company_size,
            "business_description": self.business_description,
            "main_objectives": self.main_objectives,
            "biggest_challenge": self.biggest_challenge,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Organization {self.id}: {self.slug}>"
