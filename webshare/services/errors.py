"""Errors raised by the content store."""


class StoreError(Exception):
    """Base class for content store failures."""


class UploadValidationError(StoreError):
    """The upload was rejected before anything was written."""


class StorageIOError(StoreError):
    """A filesystem operation failed and the current operation was aborted."""


class CorruptMetadataError(StoreError):
    """An item's sidecar is missing or cannot be decoded."""


class ItemNotFoundError(StoreError):
    """No readable item exists for the requested id and name."""
