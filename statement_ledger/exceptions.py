"""Exception classes for the statement ledger service."""


class StatementLedgerError(Exception):
    """Base exception for the statement ledger service."""
    pass


class MissingCredentialError(StatementLedgerError):
    """No usable API key for a provider."""
    pass


class ProviderHTTPError(StatementLedgerError):
    """Provider answered with a non-success status."""

    def __init__(self, provider: str, status_code: int | None, message: str):
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider} API error ({status_code}): {message}")


class EmptyResponseError(StatementLedgerError):
    """Provider call succeeded but returned no content."""
    pass


class ParseError(StatementLedgerError):
    """Provider payload is not valid JSON or does not match the expected shape."""
    pass


class ExtractionError(StatementLedgerError):
    """A file could not be turned into text or images."""
    pass


class LedgerError(StatementLedgerError):
    """Invalid ledger operation (no report loaded, index out of range)."""
    pass


class DirectiveError(StatementLedgerError):
    """Chat directive is missing the payload its action needs."""
    pass
