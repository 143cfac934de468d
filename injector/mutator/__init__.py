"""Injection decision engine and JSON patch builder."""

from .decision import Decision, Outcome, decide
from .patch import build_patch, build_patch_operations

__all__ = [
    "Decision",
    "Outcome",
    "build_patch",
    "build_patch_operations",
    "decide",
]
