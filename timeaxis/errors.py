"""
Exception types raised by the time-axis core.

Every failure in this package degrades to a simpler fallback at the
orchestration layer (see pipeline.build_time_axis); these exceptions mark the
points where a lower layer cannot proceed on its own.
"""


class TimeAxisError(Exception):
    """Base exception for time-axis errors."""

    pass


class InvalidFiscalMonthError(TimeAxisError, ValueError):
    """Raised when a fiscal year start month is outside 1..12."""

    pass


class AggregationError(TimeAxisError):
    """Raised when records cannot be bucketed (no usable metric fields)."""

    pass


class InvalidParamsError(TimeAxisError, ValueError):
    """Raised when axis parameters or chart settings cannot be interpreted."""

    pass
