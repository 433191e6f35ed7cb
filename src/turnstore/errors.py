"""Exception types raised by turnstore.

Filesystem failures surface as the builtin ``OSError``; these cover the
failures that are specific to the store.
"""


class EmbeddingError(Exception):
    """The embedding provider failed or returned a malformed vector."""


class FormatError(ValueError):
    """The index file is unreadable, corrupt, or has an unexpected schema.

    The index is derived data: discard it and run ``rebuild_index`` to
    re-derive it from the record log.
    """


class StoreLockedError(OSError):
    """Another process holds the store directory lock."""
