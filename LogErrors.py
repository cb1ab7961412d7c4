"""
Errors raised by the LoG edge detection engine.
Every one of them is terminal for the whole run.
"""


class LogEdgesError(Exception):
    """Base class for all engine errors."""


class UsageError(LogEdgesError):
    """Wrong command line."""


class InputNotFound(LogEdgesError):
    """The input image path cannot be opened."""


class InvalidPartition(LogEdgesError):
    """Rows cannot be split over the given number of processes."""


class InvalidThreadCount(LogEdgesError):
    """Thread count below one."""


class OutOfRange(LogEdgesError):
    """Pixel coordinates outside the buffer."""


class TransportFailure(LogEdgesError):
    """A message was malformed, mis-sized or could not be delivered."""
