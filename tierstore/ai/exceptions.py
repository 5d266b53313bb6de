class AnalysisError(Exception):
    """Raised when document analysis fails."""


class AnalysisValidationError(AnalysisError):
    """Raised when the provider response does not match the expected shape."""


class AnalysisNetworkError(AnalysisError):
    """Raised when the AI provider call fails due to network/infrastructure issues."""
