class LennyListensError(Exception):
    pass

class ConfigurationError(LennyListensError):
    pass

class ValidationError(LennyListensError):
    """Inbound payload is missing the conversation id or the intake fields."""

class GenerationError(LennyListensError):
    pass

class UpstreamError(GenerationError):
    """The generation backend answered with a non-success status or was unreachable."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

class MissingResultError(GenerationError):
    """The backend answered but no perspective id / URL pair could be extracted."""

class StoreUnavailable(LennyListensError):
    pass

class PollTimeout(LennyListensError):
    pass
