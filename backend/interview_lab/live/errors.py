class LiveSessionError(Exception):
    retryable = False


class ConfigurationError(LiveSessionError):
    """Missing credential or session context; fatal to start."""


class TransportError(LiveSessionError):
    retryable = True


class FinalizeError(LiveSessionError):
    retryable = True
