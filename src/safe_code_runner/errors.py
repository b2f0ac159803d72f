from __future__ import annotations


class CodeRunnerError(Exception):
    """Base error for code runner failures."""


class ValidationError(CodeRunnerError):
    """Raised when a request is missing fields or is malformed."""


class UnsupportedLanguageError(ValidationError):
    """Raised when a language has no registered profile.

    Example:
        ```python
        raise UnsupportedLanguageError("brainfuck")
        ```
    """

    def __init__(self, language: str) -> None:
        """Store the rejected language name.

        Example:
            ```python
            err = UnsupportedLanguageError("cobol")
            ```
        """
        super().__init__(f"Unsupported language: {language}")
        self.language = language


class TemplateNotFoundError(CodeRunnerError):
    """Raised when a template identifier does not resolve.

    Example:
        ```python
        raise TemplateNotFoundError(42)
        ```
    """

    def __init__(self, template_id: int) -> None:
        """Store the missing template identifier.

        Example:
            ```python
            err = TemplateNotFoundError(7)
            ```
        """
        super().__init__("Code template not found.")
        self.template_id = template_id


class CompileError(CodeRunnerError):
    """Raised by `ExecutionResult.raise_for_status` when compilation failed."""


class ProgramError(CodeRunnerError):
    """Raised by `ExecutionResult.raise_for_status` for non-zero exit or stderr output."""


class ExecutionTimeoutError(CodeRunnerError):
    """Raised by `ExecutionResult.raise_for_status` when the deadline killed the program."""


class InfrastructureError(CodeRunnerError):
    """Raised when the isolation runtime or toolchain itself misbehaves."""


class CleanupError(CodeRunnerError):
    """Raised internally when workspace removal or process reaping fails."""
