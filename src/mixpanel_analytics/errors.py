"""Error kinds raised inside the SDK.

None of these escape the public tracker API. Each boundary (recorders,
queue, tracker) catches them, logs, and degrades to "try again later" or
"drop and continue".
"""

from __future__ import annotations

from typing import Optional


class MixpanelError(Exception):
    """Base class for SDK errors."""


class PersistenceError(MixpanelError):
    """Local storage could not be read or written."""


class NetworkError(MixpanelError):
    """A batch could not be delivered; it stays queued for a later flush."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SerializationError(MixpanelError):
    """A property value has no JSON representation."""
