"""Debug output switch for the analytics engine.

``DatabaseManager`` and ``ErrorPatternManager`` take an optional ``DebugUtil``.
In "loud" mode their SQL traces and per-sample batch failures are printed to
stdout while a developer watches a session being recorded; in "quiet" mode
(the default) the same lines go to the ``DebugUtil`` logger at debug level.
"""

import logging
import os
from typing import Optional, Sequence

DEBUG_MODE_ENV_VAR = "TYPING_ANALYTICS_DEBUG_MODE"
VALID_MODES = ("quiet", "loud")


def _normalize_mode(mode: Optional[str]) -> str:
    if mode is None:
        return "quiet"
    mode = mode.strip().lower()
    return mode if mode in VALID_MODES else "quiet"


class DebugUtil:
    """Route debug messages to stdout ("loud") or the logger ("quiet")."""

    def __init__(self, mode: Optional[str] = None) -> None:
        """Create a debug switch.

        Args:
            mode: "quiet" or "loud". When omitted the mode is read from
                TYPING_ANALYTICS_DEBUG_MODE; anything unrecognised is quiet.
        """
        self._mode = _normalize_mode(mode if mode is not None else os.environ.get(DEBUG_MODE_ENV_VAR))

        self._logger = logging.getLogger(self.__class__.__name__)
        if not self._logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(
                logging.Formatter(
                    fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
            self._logger.addHandler(handler)
            self._logger.setLevel(logging.DEBUG)

    def debug_mode(self) -> str:
        return self._mode

    def set_mode(self, mode: str) -> None:
        """Change the mode. Invalid values fall back to "quiet"."""
        self._mode = _normalize_mode(mode)

    def is_loud(self) -> bool:
        return self._mode == "loud"

    def is_quiet(self) -> bool:
        return self._mode == "quiet"

    def debugMessage(self, *args: object, **kwargs: object) -> None:
        """Emit one debug line.

        Only ``sep`` and ``end`` string keyword arguments and a boolean
        ``flush`` are honoured, and only in loud mode.
        """
        if self._mode == "loud":
            print_kwargs: dict[str, object] = {}
            for name in ("sep", "end"):
                value = kwargs.get(name)
                if name in kwargs and (value is None or isinstance(value, str)):
                    print_kwargs[name] = value
            if isinstance(kwargs.get("flush"), bool):
                print_kwargs["flush"] = kwargs["flush"]
            print("[DEBUG]", *args, **print_kwargs)  # type: ignore[call-overload]
            return

        message = " ".join(str(arg) for arg in args)
        if message:
            self._logger.debug(message)

    def trace_sql(self, query: str, params: Sequence[object] = ()) -> None:
        """Emit a statement on one line with its bound parameters."""
        self.debugMessage(f"SQL: {' '.join(query.split())} params={tuple(params)!r}")

    def batch_failure(self, aggregate: str, sample: object, error: BaseException) -> None:
        """Emit the sample a batch upsert skipped and why."""
        self.debugMessage(f"{aggregate} upsert skipped {sample!r}: {type(error).__name__}: {error}")
