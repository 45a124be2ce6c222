"""Error taxonomy shared by agents and collaborators."""


class ConciergeError(Exception):
    """Base class for errors raised to callers of the pipeline."""

    code = "CONCIERGE_ERROR"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        if code:
            self.code = code


class InputError(ConciergeError, ValueError):
    """Malformed or missing user input. Rejected before reaching the bus."""

    code = "INPUT_ERROR"


class ASRFailure(ConciergeError):
    """Speech-to-text collaborator failed or returned no text."""

    code = "ASR_FAILURE"

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.provider = provider


class BusClosedError(ConciergeError, RuntimeError):
    """Publish attempted on a task bus that has been closed."""

    code = "BUS_CLOSED"


class StorageNotInitializedError(RuntimeError):
    """Storage used before init() or after close()."""

    def __init__(self) -> None:
        super().__init__("Storage not initialized")
