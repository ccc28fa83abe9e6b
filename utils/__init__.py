"""
Shared utilities for the sandbox examples.

- visualize: Rich terminal visualization of sandbox runs and orchestrator sessions
"""

from .visualize import show_run, visualize, visualize_run, visualize_session

__all__ = [
    "visualize",
    "visualize_run",
    "visualize_session",
    "show_run"
]
