from __future__ import annotations


class RotmarksError(Exception):
    """Base class for errors raised by rotmarks."""


class StoreError(RotmarksError):
    """A bookmark/history store operation failed (missing id, locked db, ...)."""


class NotFoundError(RotmarksError):
    """A referenced backup (or other owned entity) does not exist."""


class NetworkError(RotmarksError):
    """Timeout, DNS or connection failure while talking to a remote host."""
