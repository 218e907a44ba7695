"""Helper utilities shared by the typing analytics packages."""

from .debug_util import DebugUtil  # noqa: F401
