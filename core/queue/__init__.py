"""
Durable local queue for write commands.

Includes:
- DurableQueue: persisted retry queue with dedupe, age and capacity limits
- QueueWorker: asyncio task draining the queue on a timer
- storage backends: file-backed and in-memory key/value stores
"""

from .durable_queue import DrainReport, DurableQueue, QueuedCommand
from .storage import FileKeyValueStorage, MemoryKeyValueStorage, open_storage
from .worker import QueueWorker

__all__ = [
    "DrainReport",
    "DurableQueue",
    "FileKeyValueStorage",
    "MemoryKeyValueStorage",
    "QueueWorker",
    "QueuedCommand",
    "open_storage",
]
