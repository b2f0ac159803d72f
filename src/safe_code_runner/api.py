from __future__ import annotations

import logging
from typing import Any, Callable

from flask import Flask, jsonify, request

from .errors import (
    CodeRunnerError,
    CompileError,
    ExecutionTimeoutError,
    InfrastructureError,
    ProgramError,
    TemplateNotFoundError,
    ValidationError,
)
from .request import ExecutionRequest
from .result import TIMEOUT_MESSAGE, ExecutionResult
from .runner import CodeRunner

logger = logging.getLogger(__name__)

INFRASTRUCTURE_MESSAGE = "Docker runtime error. Please check your container setup."
SERVER_ERROR_MESSAGE = "Server error"

Reply = tuple[dict[str, Any], int]


def _error_reply(exc: CodeRunnerError, result: ExecutionResult | None) -> Reply:
    """Map an error from the taxonomy to a JSON body and HTTP status.

    Example:
        ```python
        body, status = _error_reply(TemplateNotFoundError(3), None)  # 404
        ```
    """
    stdout = result.stdout.strip() if result is not None else ""
    if isinstance(exc, TemplateNotFoundError):
        return {"message": str(exc)}, 404
    if isinstance(exc, ValidationError):
        return {"message": str(exc)}, 400
    if isinstance(exc, (CompileError, ProgramError)):
        return {"message": "Execution failed", "output": stdout or None, "errors": str(exc)}, 400
    if isinstance(exc, ExecutionTimeoutError):
        return {"message": TIMEOUT_MESSAGE, "output": None, "errors": TIMEOUT_MESSAGE}, 408
    if isinstance(exc, InfrastructureError):
        return {"message": INFRASTRUCTURE_MESSAGE, "error": str(exc)}, 500
    return {"message": SERVER_ERROR_MESSAGE, "error": str(exc)}, 500


def _handle(
    runner: CodeRunner,
    build: Callable[[dict[str, Any]], ExecutionRequest],
    render: Callable[[ExecutionResult], dict[str, Any]],
) -> Reply:
    """Parse the JSON body, execute, and format the reply for one endpoint.

    Example:
        ```python
        body, status = _handle(runner, ExecutionRequest.from_code_payload, _code_body)
        ```
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return {"message": "Invalid JSON payload."}, 400
    result: ExecutionResult | None = None
    try:
        result = runner.execute(build(payload))
        result.raise_for_status()
    except CodeRunnerError as exc:
        if isinstance(exc, InfrastructureError):
            logger.error("Execution infrastructure failure: %s", exc)
        else:
            logger.info("Execution request rejected or failed: %s", type(exc).__name__)
        return _error_reply(exc, result)
    except Exception:
        logger.exception("Unexpected execution error")
        return {"message": SERVER_ERROR_MESSAGE}, 500
    return render(result), 200


def _code_body(result: ExecutionResult) -> dict[str, Any]:
    """Format a successful inline-code run as `{output, errors}`.

    Example:
        ```python
        body = _code_body(result)  # {"output": "hi\\n", "errors": None}
        ```
    """
    return {"output": result.stdout or "No output", "errors": None}


def _template_body(result: ExecutionResult) -> dict[str, Any]:
    """Format a successful template run as `{stdout, stderr}`.

    Example:
        ```python
        body = _template_body(result)  # {"stdout": "x", "stderr": None}
        ```
    """
    return {"stdout": result.stdout.strip(), "stderr": result.stderr.strip() or None}


def create_app(runner: CodeRunner) -> Flask:
    """Build the Flask application exposing the execution endpoints.

    Example:
        ```python
        app = create_app(CodeRunner(DockerEngine()))
        app.run(host="127.0.0.1", port=8081)
        ```
    """
    app = Flask(__name__)

    @app.route("/health", methods=["GET"])
    def health() -> Any:
        """Report liveness.

        Example:
            ```python
            client.get("/health")
            ```
        """
        return jsonify({"ok": True})

    @app.route("/execute", methods=["POST"])
    def execute() -> Any:
        """Execute inline code.

        Example:
            ```python
            client.post("/execute", json={"language": "python", "code": "print(1)"})
            ```
        """
        body, status = _handle(runner, ExecutionRequest.from_code_payload, _code_body)
        return jsonify(body), status

    @app.route("/execute-template", methods=["POST"])
    def execute_template() -> Any:
        """Execute a stored template.

        Example:
            ```python
            client.post("/execute-template", json={"templateId": 1, "input": "abc"})
            ```
        """
        body, status = _handle(runner, ExecutionRequest.from_template_payload, _template_body)
        return jsonify(body), status

    return app
