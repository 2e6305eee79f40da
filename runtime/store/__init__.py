"""
Storage abstractions for the study server.

Includes:
- SessionStore: session records (in-memory + file-backed) with
  conditional writes
- ResponseStore: append-only answer tables (in-memory + JSONL)
"""
