"""Exception types raised by the mosaic renderer."""


class MosaicError(Exception):
    """Base class for renderer errors."""


class PlanError(MosaicError, ValueError):
    """Plan or tile data could not be parsed."""


class SourceError(MosaicError):
    """The primary stats/plan retrieval failed. Fatal for the session."""
