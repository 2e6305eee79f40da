"""
Client-side submission of study writes.

Includes:
- RemoteEndpoint / FallbackWriter: httpx wrappers for the server surface
- SubmissionClient: fire-and-forget and blocking submission paths
- chunking helpers for oversized telemetry and batched answer rows
"""

from .chunking import batched, reassemble_chunks, split_payload
from .client import (
    META_DIALOGUE_ID,
    META_TIMING_ID,
    CreatedSession,
    SubmissionClient,
    is_meta_question_id,
)
from .remote import FallbackWriter, RemoteEndpoint

__all__ = [
    "META_DIALOGUE_ID",
    "META_TIMING_ID",
    "CreatedSession",
    "FallbackWriter",
    "RemoteEndpoint",
    "SubmissionClient",
    "batched",
    "is_meta_question_id",
    "reassemble_chunks",
    "split_payload",
]
