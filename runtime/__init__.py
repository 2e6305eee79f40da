"""
Runtime package for the study server.

This package contains:
- API layer (FastAPI app factory + routes + rate limiting)
- Lifecycle (session state machine, inclusion statistics)
- Stores (sessions, append-only responses)
- Models (Pydantic models for requests and sessions)
"""
