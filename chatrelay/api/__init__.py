"""HTTP surface: a single chat endpoint served with FastAPI."""

from chatrelay.api.app import create_app

__all__ = ["create_app"]
