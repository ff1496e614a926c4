"""
API Layer for the Live Face Overlay Service

This package provides the FastAPI-based connection gateway that exposes:
- WebSocket endpoint streaming landmark frames in and overlay transforms out
- REST endpoints for one-shot animation, session lookup and server status
"""
