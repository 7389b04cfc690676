"""Exception hierarchy shared by the generator, transmitters and executer."""


class ExecuterError(Exception):
    """Base class for executer errors."""


class RequestBuildError(ExecuterError):
    """Raised when a request cannot be built from the current payload state."""


class TransmissionError(ExecuterError):
    """Raised when a request fails on the wire (connect, write, read, timeout)."""


class ResponseProcessingError(ExecuterError):
    """Raised when a response body cannot be read or decompressed."""
