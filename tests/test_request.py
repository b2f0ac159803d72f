import pytest

from safe_code_runner import ExecutionRequest
from safe_code_runner.errors import ValidationError


def test_inline_request() -> None:
    req = ExecutionRequest(language="python", code="print(1)", stdin="abc")
    assert req.is_template is False
    assert req.stdin == "abc"


def test_template_request() -> None:
    req = ExecutionRequest(template_id=4)
    assert req.is_template is True


@pytest.mark.parametrize(
    "kwargs",
    [
        {},
        {"language": "python"},
        {"code": "print(1)"},
        {"language": "", "code": "print(1)"},
        {"language": "python", "code": ""},
    ],
)
def test_missing_language_or_code_is_rejected(kwargs: dict) -> None:
    with pytest.raises(ValidationError, match="Language and code are required"):
        ExecutionRequest(**kwargs)


def test_both_forms_are_rejected() -> None:
    with pytest.raises(ValidationError, match="not both"):
        ExecutionRequest(language="python", code="print(1)", template_id=1)


def test_non_positive_timeout_is_rejected() -> None:
    with pytest.raises(ValidationError, match="timeout_seconds"):
        ExecutionRequest(language="python", code="print(1)", timeout_seconds=0)


def test_code_payload() -> None:
    req = ExecutionRequest.from_code_payload({"language": "js", "code": "console.log(1)", "input": "x"})
    assert (req.language, req.code, req.stdin) == ("js", "console.log(1)", "x")


def test_code_payload_empty_input_means_no_stdin() -> None:
    req = ExecutionRequest.from_code_payload({"language": "python", "code": "print(1)", "input": ""})
    assert req.stdin is None


@pytest.mark.parametrize(
    "payload",
    [{}, {"language": "python"}, {"language": 3, "code": "x"}, {"language": "python", "code": None}],
)
def test_code_payload_requires_strings(payload: dict) -> None:
    with pytest.raises(ValidationError, match="Language and code are required"):
        ExecutionRequest.from_code_payload(payload)


def test_code_payload_rejects_non_string_input() -> None:
    with pytest.raises(ValidationError, match="Input must be a string"):
        ExecutionRequest.from_code_payload({"language": "python", "code": "print(1)", "input": 5})


def test_template_payload() -> None:
    req = ExecutionRequest.from_template_payload({"templateId": "7", "input": "abc"})
    assert req.template_id == 7
    assert req.stdin == "abc"


def test_template_payload_requires_id() -> None:
    with pytest.raises(ValidationError, match="Template ID is required"):
        ExecutionRequest.from_template_payload({"input": "abc"})
