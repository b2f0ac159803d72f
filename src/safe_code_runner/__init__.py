from .errors import (
    CodeRunnerError,
    CompileError,
    ExecutionTimeoutError,
    InfrastructureError,
    ProgramError,
    TemplateNotFoundError,
    UnsupportedLanguageError,
    ValidationError,
)
from .execution.dispatch import StrategyEngine
from .execution.docker_engine import DockerEngine
from .execution.local_engine import LocalEngine
from .languages import DEFAULT_REGISTRY, Language, LanguageProfile, LanguageRegistry
from .policy import RunnerPolicy
from .request import ExecutionRequest
from .result import ExecutionResult, ExecutionStatus
from .runner import CodeRunner, run_code, run_template
from .templates import CodeTemplate, InMemoryTemplateStore, JsonTemplateStore
from .workspace import Workspace, WorkspaceManager

__all__ = [
    "CodeRunner",
    "CodeRunnerError",
    "CodeTemplate",
    "CompileError",
    "DEFAULT_REGISTRY",
    "DockerEngine",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionStatus",
    "ExecutionTimeoutError",
    "InMemoryTemplateStore",
    "InfrastructureError",
    "JsonTemplateStore",
    "Language",
    "LanguageProfile",
    "LanguageRegistry",
    "LocalEngine",
    "ProgramError",
    "RunnerPolicy",
    "StrategyEngine",
    "TemplateNotFoundError",
    "UnsupportedLanguageError",
    "ValidationError",
    "Workspace",
    "WorkspaceManager",
    "run_code",
    "run_template",
]
