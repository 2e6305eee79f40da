"""
Pydantic models used by the study server.

Split into:
- session_models: Session + LifecycleState + ValidationStatus + ResponseRecord
- api_models: HTTP request/response schemas
"""
