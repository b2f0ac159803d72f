from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Protocol

from .errors import TemplateNotFoundError, ValidationError


@dataclass(frozen=True, slots=True)
class CodeTemplate:
    """Stored code snippet owned by the persistence layer.

    Example:
        ```python
        tpl = CodeTemplate(template_id=1, language="python", code="print('x')")
        ```
    """

    template_id: int
    language: str
    code: str


class TemplateStore(Protocol):
    def get_template(self, template_id: int) -> CodeTemplate | None:
        """Return the template for `template_id`, or None when it does not exist.

        Example:
            ```python
            tpl = store.get_template(3)
            ```
        """
        ...


class InMemoryTemplateStore:
    """Dictionary-backed template store, useful for embedding and tests.

    Example:
        ```python
        store = InMemoryTemplateStore([CodeTemplate(1, "python", "print('x')")])
        ```
    """

    def __init__(self, templates: Iterable[CodeTemplate] = ()) -> None:
        """Index the given templates by id.

        Example:
            ```python
            store = InMemoryTemplateStore()
            ```
        """
        self._templates = {tpl.template_id: tpl for tpl in templates}

    def add(self, template: CodeTemplate) -> None:
        """Insert or replace a template.

        Example:
            ```python
            store.add(CodeTemplate(2, "c", "int main(){return 0;}"))
            ```
        """
        self._templates[template.template_id] = template

    def get_template(self, template_id: int) -> CodeTemplate | None:
        """Return the stored template or None.

        Example:
            ```python
            tpl = store.get_template(2)
            ```
        """
        return self._templates.get(template_id)


class JsonTemplateStore(InMemoryTemplateStore):
    """Read-only template store loaded from a JSON array of `{id, language, code}` objects.

    Example:
        ```python
        store = JsonTemplateStore("templates.json")
        ```
    """

    def __init__(self, path: str | Path) -> None:
        """Load and validate the JSON file.

        Example:
            ```python
            store = JsonTemplateStore(Path("/srv/templates.json"))
            ```
        """
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(raw, list):
            raise ValueError("Template file must contain a JSON array")
        super().__init__(_template_from_json(item) for item in raw)


def _template_from_json(item: Any) -> CodeTemplate:
    """Convert one JSON object into a `CodeTemplate`.

    Example:
        ```python
        tpl = _template_from_json({"id": 1, "language": "python", "code": "print(1)"})
        ```
    """
    if not isinstance(item, dict):
        raise ValueError("Each template must be a JSON object")
    language = item.get("language")
    code = item.get("code")
    if not isinstance(language, str) or not isinstance(code, str):
        raise ValueError("Each template needs string 'language' and 'code' fields")
    return CodeTemplate(template_id=parse_template_id(item.get("id")), language=language, code=code)


def parse_template_id(value: Any) -> int:
    """Validate a template identifier given as an int or a decimal string.

    Example:
        ```python
        template_id = parse_template_id("12")  # 12
        ```
    """
    if value is None or value == "":
        raise ValidationError("Template ID is required.")
    if isinstance(value, bool):
        raise ValidationError("Invalid Template ID.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        digits = value.strip()
        if digits.isascii() and digits.isdecimal():
            return int(digits)
    raise ValidationError("Invalid Template ID.")


def resolve_template(store: TemplateStore, template_id: int) -> CodeTemplate:
    """Fetch a template or fail fast with `TemplateNotFoundError`.

    Example:
        ```python
        tpl = resolve_template(store, 1)
        ```
    """
    template = store.get_template(template_id)
    if template is None:
        raise TemplateNotFoundError(template_id)
    return template
