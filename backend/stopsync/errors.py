"""Exceptions raised by the reconciliation core.

Components raise these; the HTTP layer turns them into status codes.
"""


class StopSyncError(Exception):
    """Base class for all StopSync errors."""


class ImportFormatError(StopSyncError):
    """Input could not be interpreted (bad JSON, no lat/lon columns, ...)."""


class RemoteApiError(StopSyncError):
    """Remote endpoint failed, returned non-2xx, or sent an unexpected payload."""


class StopNotFoundError(StopSyncError):
    pass
