from __future__ import annotations


class StorageError(Exception):
    """A query or transaction failed; the store itself is usable."""


class StorageUnavailableError(Exception):
    """The store could not be opened or initialized."""
