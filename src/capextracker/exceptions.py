from __future__ import annotations


class CapexError(Exception):
    """Base class for errors raised at the store write boundary."""


class ValidationError(CapexError, ValueError):
    """Input rejected before anything was written."""


class DuplicateKeyError(ValidationError):
    """A natural key (resource id, PV number, forecast pair) already exists."""


class NotFoundError(CapexError, KeyError):
    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else ""
