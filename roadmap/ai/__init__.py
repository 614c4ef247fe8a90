"""
Business Roadmap Engine
AI module — phase content generation.

Submodules:
    - gateway: LLM Gateway (provider routing, retry, usage logging)
    - prompt_registry: YAML prompt template loading
    - phase_generator: roadmap / single-phase content generator
"""
