"""FastAPI application for run control and clarification review."""

from .app import create_app

__all__ = ["create_app"]
