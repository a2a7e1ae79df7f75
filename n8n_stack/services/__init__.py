"""
n8n Stack Services

Service layer for command orchestration.
"""

from .stack_service import StackService  # noqa: F401

__all__ = ["StackService"]
