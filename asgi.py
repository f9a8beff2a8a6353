"""
asgi.py -- ASGI entry point for the Etheryte API.

Run with:  uvicorn asgi:app --reload

api/main.py builds the application; this module only re-exports it so
deployment tooling has a stable, short import path.
"""

from api.main import app

__all__ = ["app"]
