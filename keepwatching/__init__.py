"""Runnable package exposing the watch status FastAPI app."""

from __future__ import annotations

from watchstatus.main import app, create_app

__all__ = ["app", "create_app"]
