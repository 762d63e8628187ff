"""Serenity — live session orchestrator for The Serenity Channel."""

__version__ = "0.1.0"
