"""
Business Roadmap Engine
Prompt Registry.

YAML-based prompt template management:
    - Template loading from roadmap/ai/prompts/
    - {{variable}} rendering
    - Version tracking

Usage:
    from roadmap.ai.prompt_registry import PromptRegistry
    registry = PromptRegistry()
    messages = registry.render("phase_roadmap", methodology="lean_startup", ...)
"""

import logging
import os
import re
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_PROMPTS_DIR = os.path.join(os.path.dirname(__file__), "prompts")


class PromptTemplate:
    """A single prompt template with metadata."""

    def __init__(self, name: str, version: str, system: str, user: str, description: str = ""):
        self.name = name
        self.version = version
        self.system = system
        self.user = user
        self.description = description

    def render(self, **variables) -> list[dict]:
        """
        Render template with variables, returning chat messages.

        Returns:
            List of message dicts: [{"role": "system", "content": "..."}, ...]
        """
        system_rendered = self._substitute(self.system, variables)
        user_rendered = self._substitute(self.user, variables)

        messages = []
        if system_rendered.strip():
            messages.append({"role": "system", "content": system_rendered})
        if user_rendered.strip():
            messages.append({"role": "user", "content": user_rendered})
        return messages

    @staticmethod
    def _substitute(template: str, variables: dict) -> str:
        """Replace {{var}} placeholders with values."""
        def replacer(match):
            key = match.group(1).strip()
            return str(variables.get(key, f"{{{{{key}}}}}"))
        return re.sub(r'\{\{(\s*\w+\s*)\}\}', replacer, template)


class PromptRegistry:
    """Registry of prompt templates loaded from YAML files."""

    def __init__(self, prompts_dir: str | None = None):
        self._prompts_dir = prompts_dir or _PROMPTS_DIR
        self._templates: dict[str, dict[str, PromptTemplate]] = {}  # name → {version → template}
        self._load_from_dir()

    def _load_from_dir(self):
        prompts_path = Path(self._prompts_dir)
        if not prompts_path.exists():
            logger.warning("Prompts directory not found: %s", self._prompts_dir)
            return

        for yaml_file in sorted(prompts_path.glob("*.yaml")):
            with open(yaml_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
            if not data or not isinstance(data, dict):
                continue
            tpl = PromptTemplate(
                name=data.get("name", yaml_file.stem),
                version=str(data.get("version", "v1")),
                system=data.get("system", ""),
                user=data.get("user", ""),
                description=data.get("description", ""),
            )
            self._templates.setdefault(tpl.name, {})[tpl.version] = tpl
            logger.debug("Loaded prompt template: %s (%s)", tpl.name, tpl.version)

    def get(self, name: str, version: str | None = None) -> PromptTemplate:
        """Latest (or the given) version of a template. KeyError when unknown."""
        versions = self._templates[name]
        if version:
            return versions[version]
        return versions[sorted(versions)[-1]]

    def render(self, name: str, version: str | None = None, **variables) -> list[dict]:
        return self.get(name, version).render(**variables)

    def list_templates(self) -> list[str]:
        return sorted(self._templates)
