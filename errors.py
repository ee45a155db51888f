class SignalingError(Exception):
    """Base class for recoverable signaling errors."""


class InvalidIdentifierError(SignalingError, ValueError):
    """A room or participant id is empty or not a string."""


class TransportError(SignalingError):
    """The relay could not attach a participant to a transport group."""


class NegotiationError(SignalingError):
    """A peer negotiation step failed.

    ``code`` identifies the failing step, e.g. ``CREATE_OFFER_FAILED``.
    """

    def __init__(self, message: str, code: str):
        super().__init__(message)
        self.message = message
        self.code = code

    def __str__(self):
        return f"{self.code}: {self.message}"


class DirectoryInconsistencyError(RuntimeError):
    """The room and participant maps are no longer mirror images.

    This is a bug, not a runtime condition; nothing catches it.
    """
