"""Fusioncore: identity fusion and resolution engine."""

__version__ = "1.0.0"
