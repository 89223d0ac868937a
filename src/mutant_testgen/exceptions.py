"""Custom exception classes for mutant test generation."""

from typing import Optional


class MutantTestGenError(Exception):
    """Base exception for all mutant test generation errors."""

    def __init__(self, message: str, suggestion: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion

    def __str__(self):
        result = self.message
        if self.suggestion:
            result += f"\n\nSuggestion: {self.suggestion}"
        return result


class ConfigurationError(MutantTestGenError):
    """Raised when score, iteration or batch settings are invalid."""
    pass


class ValidationError(MutantTestGenError):
    """Raised when generated tests or collaborator reports fail structural checks."""
    pass


class CollaboratorError(MutantTestGenError):
    """Raised when a language-model, mutation-testing or storage call fails."""

    def __init__(self, message: str, collaborator: Optional[str] = None, suggestion: Optional[str] = None):
        super().__init__(message, suggestion)
        self.collaborator = collaborator


class LLMClientError(CollaboratorError):
    """Raised when LLM client operations fail."""

    def __init__(self, message: str, status_code: Optional[int] = None, suggestion: Optional[str] = None):
        super().__init__(message, "llm", suggestion)
        self.status_code = status_code


class MutationEngineError(CollaboratorError):
    """Raised when the mutation testing tool fails or produces no report."""

    def __init__(self, message: str, suggestion: Optional[str] = None):
        super().__init__(message, "mutation", suggestion)


class StorageError(CollaboratorError):
    """Raised when file operations fail."""

    def __init__(self, message: str, filepath: Optional[str] = None, suggestion: Optional[str] = None):
        super().__init__(message, "storage", suggestion)
        self.filepath = filepath


class SessionStateError(MutantTestGenError):
    """Raised when a finalized generation session is modified."""
    pass
