"""
asgi.py -- ASGI entry point for AuthGate.

Keeps the server command stable regardless of how api/ is organised.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
