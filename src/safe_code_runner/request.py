from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from .errors import ValidationError
from .templates import parse_template_id


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """Caller-facing request: either inline code or a stored template reference.

    Example:
        ```python
        direct = ExecutionRequest(language="python", code="print('x')")
        stored = ExecutionRequest(template_id=4, stdin="abc")
        ```
    """

    language: str | None = None
    code: str | None = None
    template_id: int | None = None
    stdin: str | None = None
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        """Enforce that exactly one request form is used.

        Example:
            ```python
            ExecutionRequest(language="c", code="int main(){}")
            ```
        """
        inline = self.language is not None or self.code is not None
        if inline and self.template_id is not None:
            raise ValidationError("Provide either language and code or a template ID, not both.")
        if self.template_id is None and not (self.language and self.code):
            raise ValidationError("Language and code are required.")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValidationError("timeout_seconds must be positive.")

    @property
    def is_template(self) -> bool:
        """Return True for the template-backed form.

        Example:
            ```python
            if request.is_template: ...
            ```
        """
        return self.template_id is not None

    @classmethod
    def from_code_payload(cls, payload: Mapping[str, Any]) -> "ExecutionRequest":
        """Build a direct request from a `{language, code, input}` mapping.

        Example:
            ```python
            req = ExecutionRequest.from_code_payload({"language": "python", "code": "print(1)"})
            ```
        """
        language = payload.get("language")
        code = payload.get("code")
        if not isinstance(language, str) or not isinstance(code, str) or not language or not code:
            raise ValidationError("Language and code are required.")
        return cls(language=language, code=code, stdin=_stdin_from(payload))

    @classmethod
    def from_template_payload(cls, payload: Mapping[str, Any]) -> "ExecutionRequest":
        """Build a template-backed request from a `{templateId, input}` mapping.

        Example:
            ```python
            req = ExecutionRequest.from_template_payload({"templateId": "7", "input": "abc"})
            ```
        """
        return cls(template_id=parse_template_id(payload.get("templateId")), stdin=_stdin_from(payload))


def _stdin_from(payload: Mapping[str, Any]) -> str | None:
    """Extract optional program input; empty input means no stdin.

    Example:
        ```python
        stdin = _stdin_from({"input": "abc"})
        ```
    """
    value = payload.get("input")
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError("Input must be a string.")
    return value
