"""
Business Roadmap Engine
Phase Content Generator.

Turns an organization's onboarding facts (plus its existing key results)
into roadmap phase content through the LLM gateway:
    - generate_phases(org):            every phase of a fresh roadmap
    - regenerate_single_phase(org, n): new objectives / checklist / playbook for phase n

Any gateway failure, timeout or malformed payload is raised as
GenerationFailure; callers must not persist anything in that case.
"""

import json
import logging

from flask import current_app

from roadmap.ai.gateway import LLMGateway
from roadmap.ai.prompt_registry import PromptRegistry
from roadmap.core.exceptions import GenerationFailure, NotFoundError
from roadmap.models import db
from roadmap.models.organization import Organization
from roadmap.models.phase import normalize_checklist_item, normalize_objective
from roadmap.services import okr_store

logger = logging.getLogger(__name__)

_PHASE_GUIDELINES = {
    "lean_startup": (
        "STARTUP PHASES (Lean Startup):\n"
        "- Phase 1: Validation & MVP (4-6 weeks) - Problem-Solution Fit\n"
        "- Phase 2: First Customers (6-8 weeks) - Product-Market Fit\n"
        "- Phase 3: Initial Traction (8-10 weeks) - Early scale\n"
        "- Phase 4: Scaling (10-12 weeks) - Sustainable growth\n"
        "Typical objectives: registered leads/users, validation interviews, "
        "paid conversions, MRR, NPS."
    ),
    "scaling_up": (
        "ESTABLISHED COMPANY PHASES (Scaling Up):\n"
        "- Phase 1: Optimization (6-8 weeks) - Operational efficiency\n"
        "- Phase 2: Initial Expansion (8-10 weeks) - New markets/products\n"
        "- Phase 3: Accelerated Growth (10-12 weeks) - Aggressive scale\n"
        "- Phase 4: Consolidation (8-12 weeks) - Sustainability\n"
        "Typical objectives: monthly/quarterly revenue, new customers, "
        "geographic expansion, hiring, cost reduction."
    ),
}

_METHODOLOGY_LABELS = {"lean_startup": "Lean Startup", "scaling_up": "Scaling Up"}


def resolve_methodology(org: Organization) -> str:
    return "lean_startup" if org.is_startup else "scaling_up"


class PhaseContentGenerator:
    """AI-powered roadmap phase generator."""

    def __init__(self, gateway=None, prompt_registry=None, *, model=None,
                 max_retries=1, phase_count=4):
        self.gateway = gateway or LLMGateway()
        self.prompt_registry = prompt_registry or PromptRegistry()
        self.model = model
        self.max_retries = max_retries
        self.phase_count = phase_count

    @classmethod
    def from_app(cls):
        """Build a generator from the current Flask app config."""
        config = current_app.config
        return cls(
            gateway=LLMGateway.from_config(config),
            model=config.get("LLM_DEFAULT_CHAT_MODEL"),
            max_retries=config.get("PHASE_GENERATOR_MAX_RETRIES", 1),
            phase_count=config.get("ROADMAP_PHASE_COUNT", 4),
        )

    # ── Public API ───────────────────────────────────────────────────────

    def generate_phases(self, organization_id: int) -> list[dict]:
        """
        Generate content for every phase of a new roadmap.

        Returns:
            list of normalized phase dicts ordered by phase_number:
            {phase_number, phase_name, phase_description, duration_weeks,
             objectives, checklist, playbook}

        Raises:
            NotFoundError: organization does not exist.
            GenerationFailure: gateway error or malformed payload.
        """
        org = self._get_organization(organization_id)
        methodology = resolve_methodology(org)
        messages = self.prompt_registry.render(
            "phase_roadmap",
            methodology=methodology,
            methodology_label=_METHODOLOGY_LABELS[methodology],
            business_context=self._business_context(org),
            okr_context=self._okr_context(organization_id),
            phase_guidelines=_PHASE_GUIDELINES[methodology],
            phase_count=self.phase_count,
        )
        phases = self._call(messages, organization_id, purpose="phase_generation")
        if len(phases) < self.phase_count:
            raise GenerationFailure(
                f"Generator returned {len(phases)} phases, expected {self.phase_count}",
                details={"phase_count": len(phases)},
            )
        # Renumber by position; the model's own numbering is not trusted
        return [
            {**phase, "phase_number": idx}
            for idx, phase in enumerate(phases[: self.phase_count], start=1)
        ]

    def regenerate_single_phase(self, organization_id: int, phase_number: int,
                                current_phase: dict | None = None) -> dict:
        """
        Generate replacement content for one phase.

        Raises:
            NotFoundError: organization does not exist.
            GenerationFailure: gateway error, malformed payload, or no phase in the reply.
        """
        org = self._get_organization(organization_id)
        methodology = resolve_methodology(org)
        summary = {
            k: (current_phase or {}).get(k)
            for k in ("phase_name", "phase_description", "duration_weeks", "objectives")
        }
        messages = self.prompt_registry.render(
            "phase_regenerate",
            methodology=methodology,
            methodology_label=_METHODOLOGY_LABELS[methodology],
            business_context=self._business_context(org),
            okr_context=self._okr_context(organization_id),
            current_phase=json.dumps(summary, default=str),
            phase_number=phase_number,
        )
        phases = self._call(messages, organization_id, purpose="phase_regeneration")
        match = next((p for p in phases if p.get("phase_number") == phase_number), None)
        if match is None and len(phases) == 1:
            match = phases[0]
        if match is None:
            raise GenerationFailure(
                f"Generator reply did not contain phase {phase_number}",
                details={"phase_number": phase_number},
            )
        return {**match, "phase_number": phase_number}

    # ── Internals ────────────────────────────────────────────────────────

    def _get_organization(self, organization_id: int) -> Organization:
        org = db.session.get(Organization, organization_id)
        if org is None:
            raise NotFoundError(resource="Organization", resource_id=organization_id)
        return org

    def _call(self, messages: list, organization_id: int, *, purpose: str) -> list[dict]:
        try:
            response = self.gateway.chat(
                messages,
                self.model,
                purpose=purpose,
                organization_id=organization_id,
                max_retries=self.max_retries,
            )
        except Exception as exc:
            logger.error(
                "Phase generator LLM call failed: %s", exc,
                extra={"organization_id": organization_id, "event_type": purpose},
            )
            raise GenerationFailure(f"AI generation failed: {exc}") from exc
        return self._parse_response(response.get("content") or "")

    @staticmethod
    def _business_context(org: Organization) -> str:
        kind = "Startup / new company" if org.is_startup else "Established company"
        lines = [
            f"TYPE: {kind}",
            f"NAME: {org.name}",
            f"INDUSTRY: {org.industry or 'Not specified'}",
            f"DESCRIPTION: {org.business_description or 'Not specified'}",
            f"STAGE: {org.business_stage or org.business_type or 'Initial'}",
            f"SIZE: {org.company_size or 'Not specified'}",
            f"MAIN OBJECTIVES: {org.main_objectives or 'Grow'}",
            f"BIGGEST CHALLENGE: {org.biggest_challenge or 'Not specified'}",
        ]
        return "\n".join(lines)

    @staticmethod
    def _okr_context(organization_id: int) -> str:
        key_results = okr_store.list_key_results(organization_id)
        if not key_results:
            return ""
        lines = ["EXISTING KEY RESULTS (bind phase objectives to these when relevant):"]
        for kr in key_results:
            lines.append(
                f'  - KR ID: {kr.id} | "{kr.title}" | Target: {kr.target_value:g} {kr.unit or ""}'.rstrip()
            )
        return "\n".join(lines)

    @staticmethod
    def _parse_response(content: str) -> list[dict]:
        """Parse and validate the phases payload; GenerationFailure when malformed."""
        text = content.strip()
        if text.startswith("```"):
            text = text.strip("`")
            if text.lower().startswith("json"):
                text = text[4:]
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            raise GenerationFailure("AI response is not valid JSON") from exc

        raw_phases = parsed.get("phases") if isinstance(parsed, dict) else parsed
        if not isinstance(raw_phases, list) or not raw_phases:
            raise GenerationFailure("AI response contains no phases")

        phases = []
        for idx, raw in enumerate(raw_phases, start=1):
            if not isinstance(raw, dict) or not str(raw.get("phase_name") or "").strip():
                raise GenerationFailure(f"Phase #{idx} has no phase_name")
            objectives = raw.get("objectives")
            checklist = raw.get("checklist")
            if isinstance(checklist, str):
                try:
                    checklist = json.loads(checklist)
                except json.JSONDecodeError as exc:
                    raise GenerationFailure(f"Phase #{idx} checklist is not valid JSON") from exc
            if not isinstance(objectives, list) or not isinstance(checklist, list):
                raise GenerationFailure(f"Phase #{idx} objectives/checklist must be lists")

            norm_objectives = [normalize_objective(o) for o in objectives if isinstance(o, dict)]
            if any(o["target"] <= 0 or not o["name"] for o in norm_objectives):
                raise GenerationFailure(f"Phase #{idx} has an objective without a positive target")
            norm_checklist = [
                normalize_checklist_item({**item, "completed": False, "task_id": None})
                for item in checklist
                if isinstance(item, dict) and str(item.get("task") or "").strip()
            ]
            playbook = raw.get("playbook")
            duration = raw.get("duration_weeks")
            phases.append({
                "phase_number": raw.get("phase_number") if isinstance(raw.get("phase_number"), int) else idx,
                "phase_name": str(raw["phase_name"]).strip()[:200],
                "phase_description": str(raw.get("phase_description") or ""),
                "duration_weeks": duration if isinstance(duration, int) and duration > 0 else None,
                "objectives": norm_objectives,
                "checklist": norm_checklist,
                "playbook": playbook if isinstance(playbook, dict) else {},
            })
        return phases
