"""
API Routes Package

This package contains route handlers organized by feature:
- animation.py: WebSocket endpoint for live face animation
- sessions.py: REST endpoints for one-shot animation and session lookup
"""

from api.routes.animation import router as animation_router
from api.routes.sessions import router as sessions_router

__all__ = [
    "animation_router",
    "sessions_router",
]
