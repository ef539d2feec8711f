"""Domain layer — documents, merge rules, profiles, and layer variants.

This layer depends only on stdlib, pydantic, and ruamel.yaml.
It must never import from services, infrastructure, commands, or config.
"""
