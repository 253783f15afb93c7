"""Typed failures raised by the I/O-adjacent services.

GeoSearchClient and RecordSync raise these; DebouncedQuery, the interaction
state machine and MapSession absorb them into state (empty suggestions,
unchanged mode, banners).
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional


class PawMapError(Exception):
    """Base class; `code` is the short identifier shown to clients."""
    code = "error"


class NetworkError(PawMapError):
    """Transport failure, timeout, non-success status or unreadable payload."""
    code = "network"

    def __init__(self, message: str, *, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class IntegrityError(PawMapError):
    """One or more store rows failed schema validation.

    `records` holds the rows that did validate so callers can keep rendering them.
    """
    code = "integrity"

    def __init__(self, message: str, *, records: Optional[List[Any]] = None,
                 problems: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.records = list(records or [])
        self.problems = list(problems or [])


class UploadError(PawMapError):
    code = "upload"


class AbortError(PawMapError):
    """A superseded or torn-down request. Never shown to the user."""
    code = "aborted"
