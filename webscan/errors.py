from __future__ import annotations


class WebScanError(RuntimeError):
    pass


class FetchError(WebScanError):
    """The shared target request failed at the network level."""


class QueueError(WebScanError):
    pass


class AnnotationError(WebScanError):
    pass


class JobNotFoundError(WebScanError):
    pass


class InvalidTransitionError(WebScanError):
    pass
