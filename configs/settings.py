from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv


load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


class Settings:
    """
    Central configuration for the study submission pipeline.

    Values are loaded once from environment variables (with sensible defaults)
    and then exposed via typed properties.
    """

    def __init__(self) -> None:
        # Remote write endpoint + fallback insert path
        self._api_base_url = os.getenv("STUDY_API_BASE_URL", "http://localhost:8000")
        self._fallback_base_url = os.getenv("STUDY_FALLBACK_BASE_URL") or None
        self._http_timeout_seconds = _float_env("STUDY_HTTP_TIMEOUT_SECONDS", 15.0)

        # Local durable queue
        self._queue_dir = Path(os.getenv("STUDY_QUEUE_DIR", "runtime/data/queue"))
        self._queue_max_items = _int_env("STUDY_QUEUE_MAX_ITEMS", 200)
        self._queue_max_age_ms = _int_env(
            "STUDY_QUEUE_MAX_AGE_MS", 7 * 24 * 60 * 60 * 1000
        )
        self._queue_base_backoff_ms = _int_env("STUDY_QUEUE_BASE_BACKOFF_MS", 5000)
        self._queue_max_backoff_ms = _int_env("STUDY_QUEUE_MAX_BACKOFF_MS", 60000)
        self._drain_interval_seconds = _float_env("STUDY_DRAIN_INTERVAL_SECONDS", 30.0)

        # Payload shaping
        self._chunk_limit_bytes = _int_env("STUDY_CHUNK_LIMIT_BYTES", 1800)
        self._batch_size = _int_env("STUDY_BATCH_SIZE", 200)

        # Server side
        self._runtime_data_dir = Path(
            os.getenv("STUDY_RUNTIME_DATA_DIR", "runtime/data")
        )
        self._rate_limit_max_requests = _int_env("STUDY_RATE_LIMIT_MAX_REQUESTS", 10)
        self._rate_limit_window_seconds = _float_env(
            "STUDY_RATE_LIMIT_WINDOW_SECONDS", 60.0
        )

        self._log_level = os.getenv("STUDY_LOG_LEVEL", "INFO").upper()

    # ------------------------------------------------------------------
    # Remote endpoints
    # ------------------------------------------------------------------

    @property
    def api_base_url(self) -> str:
        return self._api_base_url.rstrip("/")

    @property
    def fallback_base_url(self) -> str:
        # The insert-only fallback path lives on the same host unless overridden.
        return (self._fallback_base_url or self._api_base_url).rstrip("/")

    @property
    def http_timeout_seconds(self) -> float:
        return self._http_timeout_seconds

    # ------------------------------------------------------------------
    # Queue settings
    # ------------------------------------------------------------------

    @property
    def queue_dir(self) -> Path:
        return self._queue_dir

    @property
    def queue_max_items(self) -> int:
        return self._queue_max_items

    @property
    def queue_max_age_ms(self) -> int:
        return self._queue_max_age_ms

    @property
    def queue_base_backoff_ms(self) -> int:
        return self._queue_base_backoff_ms

    @property
    def queue_max_backoff_ms(self) -> int:
        return self._queue_max_backoff_ms

    @property
    def drain_interval_seconds(self) -> float:
        return self._drain_interval_seconds

    # ------------------------------------------------------------------
    # Payload shaping
    # ------------------------------------------------------------------

    @property
    def chunk_limit_bytes(self) -> int:
        return self._chunk_limit_bytes

    @property
    def batch_size(self) -> int:
        return self._batch_size

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    @property
    def runtime_data_dir(self) -> Path:
        return self._runtime_data_dir

    @property
    def rate_limit_max_requests(self) -> int:
        return self._rate_limit_max_requests

    @property
    def rate_limit_window_seconds(self) -> float:
        return self._rate_limit_window_seconds

    @property
    def log_level(self) -> str:
        return self._log_level


settings = Settings()
