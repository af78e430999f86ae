"""Exceptions raised by the Lectern core."""


class LecternError(Exception):
    """Base exception for catalog and extraction operations."""


class ItemNotFoundError(LecternError):
    """Raised when no catalog item exists for an id."""


class ExtractionError(LecternError):
    """Raised when a container cannot be opened or enumerated."""


class UnsupportedFormatError(ExtractionError):
    """Raised when no driver handles an item's format."""


class PageExtractionError(ExtractionError):
    """Raised when a single page cannot be read or decoded."""


class PageNotFoundError(PageExtractionError):
    """Raised when a page index is outside the item's page range."""
