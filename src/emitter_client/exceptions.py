# src/emitter_client/exceptions.py
from __future__ import annotations

from typing import Optional


class EmitterError(Exception):
    """Base class for errors raised by the emitter client."""


class EmitterConnectionError(EmitterError):
    """The broker could not be reached or refused the connection."""


class KeygenError(EmitterError):
    """The server rejected a key generation request."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
