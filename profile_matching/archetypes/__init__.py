"""Archetype definitions and classification."""

from .classifier import ArchetypeClassifier, ArchetypeDefinition, ArchetypeMatch

__all__ = ["ArchetypeClassifier", "ArchetypeDefinition", "ArchetypeMatch"]
