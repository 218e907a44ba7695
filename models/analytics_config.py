"""Configuration for the typing analytics engine.

All tunable constants live in one validated model. Values can be overridden
from the environment with ``TYPING_ANALYTICS_<FIELD_NAME>`` variables, e.g.
``TYPING_ANALYTICS_WINDOW_MS=15000``.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

ENV_PREFIX = "TYPING_ANALYTICS_"


class AnalyticsConfig(BaseModel):
    """Validated settings shared by the session engine, tracker and aggregator."""

    window_ms: int = Field(default=10000, gt=0, description="Sliding window length in milliseconds")
    max_insert_chars: int = Field(
        default=5, gt=0, description="Inserts longer than this are treated as pastes and ignored"
    )
    trend_threshold: int = Field(default=3, ge=0, description="WPM hysteresis for up/down trend")
    decay_interval_ms: int = Field(default=1000, gt=0, description="Period of the window prune tick")
    min_samples: int = Field(default=5, gt=0, description="Minimum samples before an entry is ranked")
    sequence_size: int = Field(default=2, ge=2, le=10, description="n-gram length for sequence tracking")
    weak_accuracy_threshold: int = Field(default=90, ge=0, le=100)
    high_error_rate_threshold: int = Field(default=20, ge=0, le=100)

    model_config = {
        "extra": "forbid",
        "frozen": True,
    }

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "AnalyticsConfig":
        """Build a config from ``TYPING_ANALYTICS_*`` environment variables.

        Explicit keyword overrides win over the environment. Invalid values
        raise pydantic's ``ValidationError`` rather than being ignored.
        """
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            raw = env.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None:
                values[name] = raw.strip()
        values.update(overrides)
        if values:
            logger.debug("AnalyticsConfig overrides: %s", values)
        return cls.model_validate(values)
