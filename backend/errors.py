"""Exception taxonomy shared by the ingestion pipeline and the assistant."""


class LedgerError(Exception):
    """Base class for errors raised by the ledger core."""


class ConfigurationError(LedgerError):
    """A required setting (e.g. the model API key) is missing."""


class InputValidationError(LedgerError):
    """Caller supplied an invalid request. Nothing was mutated."""


class UploadStateError(LedgerError):
    """A wizard step was invoked without the state it depends on."""


class NotFoundError(LedgerError):
    pass


class ExtractionFailed(LedgerError):
    """The PDF exists but no text could be read from it."""


class LLMError(LedgerError):
    """The language-model endpoint failed or returned something unusable."""

    retryable = False


class LLMRequestError(LLMError):
    pass


class LLMTimeoutError(LLMError):
    retryable = True


class MalformedModelOutput(LLMError):
    """Model output could not be parsed as the expected JSON."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class UnknownToolError(LedgerError):
    def __init__(self, name):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class PersistenceError(LedgerError):
    pass
