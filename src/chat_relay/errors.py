"""Exception types raised by the relay and its persistence layer."""
from __future__ import annotations


class RelayError(Exception):
    """Base class for errors that are reported back to a single connection."""


class ValidationError(RelayError):
    """An inbound event is missing a required field."""


class PersistenceError(RelayError):
    """The message store could not complete a read or write."""
