from __future__ import annotations

import argparse
import logging
from functools import partial
from dataclasses import fields, is_dataclass
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table
from rich.text import Text
from rich_argparse import RawTextRichHelpFormatter
from safe_code_runner import (
    CodeRunner,
    DEFAULT_REGISTRY,
    CodeRunnerError,
    DockerEngine,
    ExecutionRequest,
    ExecutionResult,
    JsonTemplateStore,
    LocalEngine,
    RunnerPolicy,
    StrategyEngine,
    WorkspaceManager,
)
from safe_code_runner.api import create_app
from safe_code_runner.execution.engine import ExecutionEngine
from safe_code_runner.templates import parse_template_id

_CONSOLE = Console(no_color=False)
logger = logging.getLogger(__name__)


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="python -m scr")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {escape(message)}", border_style="red"))
        self.print_help()
        raise SystemExit(2)


def _to_jsonable(value: object) -> Any:
    """Convert CLI return values into printable payloads.

    Example:
        ```python
        payload = _to_jsonable(result)
        ```
    """
    if not isinstance(value, type) and is_dataclass(value):
        return {field.name: getattr(value, field.name) for field in fields(value)}
    if hasattr(value, "__dict__"):
        return vars(value)
    return value


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for safe-code-runner execution and operations.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m scr",
        description=(
            "safe-code-runner CLI\n"
            "Run untrusted code in throwaway workspaces and manage runner-owned containers.\n"
            "Container commands never modify containers the runner did not create."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m scr run hello.py --language python\n"
            "  python -m scr run Main.java --language java --stdin 'abc'\n"
            "  python -m scr template 3 --templates templates.json\n"
            "  python -m scr languages\n"
            "  python -m scr list containers\n"
            "  python -m scr cleanup --max-age-seconds 3600\n"
            "  python -m scr serve --port 8081\n\n"
            "Remote Examples:\n"
            "  python -m scr --docker-context my-remote-context list containers\n"
            "  python -m scr --ssh-host server --ssh-user ubuntu list containers"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--backend",
        choices=["docker", "local", "auto"],
        default="docker",
        help=(
            "Execution strategy (default: docker).\n"
            "local runs the host toolchain; auto picks docker when the profile names an image."
        ),
    )
    parser.add_argument("--policy-file", help="TOML policy with timeouts, limits, and image overrides.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument(
        "--docker-context",
        help=(
            "Use an existing Docker context name.\n"
            "Mutually exclusive with --docker-host and --ssh-host."
        ),
    )
    parser.add_argument(
        "--docker-host",
        help=(
            "Connect directly with DOCKER_HOST.\n"
            "Examples: ssh://user@server, tcp://host:2376"
        ),
    )
    parser.add_argument("--ssh-host", help="SSH shortcut for remote Docker.")
    parser.add_argument("--ssh-user", help="SSH username used with --ssh-host.")
    parser.add_argument("--ssh-port", type=int, help="SSH port used with --ssh-host.")
    parser.add_argument("--ssh-key-path", help="Path to SSH private key file used with --ssh-host.")

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Execute a source file.",
        description="Compile (when needed) and run one source file under a deadline.",
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument("source", help="Path to the source file.")
    run_cmd.add_argument("-l", "--language", required=True, help="Language name, e.g. python, java, c++.")
    _add_input_arguments(run_cmd)

    template_cmd = sub.add_parser(
        "template",
        help="Execute a stored template by id.",
        description="Resolve a template from a JSON file and execute it.",
        formatter_class=_HELP_FORMATTER,
    )
    template_cmd.add_argument("template_id")
    template_cmd.add_argument("--templates", required=True, help="JSON array of {id, language, code}.")
    _add_input_arguments(template_cmd)

    sub.add_parser(
        "languages",
        help="List supported languages.",
        description="Show every language profile with its commands and isolation image.",
        formatter_class=_HELP_FORMATTER,
    )

    list_cmd = sub.add_parser(
        "list",
        help="List managed containers.",
        description="List containers created and labeled by safe-code-runner.",
        formatter_class=_HELP_FORMATTER,
    )
    list_cmd_sub = list_cmd.add_subparsers(
        dest="resource",
        required=True,
        parser_class=_RichArgumentParser,
    )
    list_cmd_sub.add_parser(
        "containers",
        help="List managed containers.",
        description="Show managed containers in running and exited states.",
        formatter_class=_HELP_FORMATTER,
    )

    stop_cmd = sub.add_parser(
        "stop",
        help="Gracefully stop managed containers.",
        description="Stop commands operate only on managed containers.",
        formatter_class=_HELP_FORMATTER,
    )
    stop_cmd_sub = stop_cmd.add_subparsers(
        dest="resource",
        required=True,
        parser_class=_RichArgumentParser,
    )
    stop_container = stop_cmd_sub.add_parser(
        "container",
        help="Gracefully stop one managed container by id.",
        formatter_class=_HELP_FORMATTER,
    )
    stop_container.add_argument("container_id")
    stop_container.add_argument("--timeout-seconds", type=int, default=10)
    stop_all = stop_cmd_sub.add_parser(
        "all",
        help="Gracefully stop all running managed containers.",
        formatter_class=_HELP_FORMATTER,
    )
    stop_all.add_argument("--timeout-seconds", type=int, default=10)

    kill_cmd = sub.add_parser(
        "kill",
        help="Force kill managed containers.",
        description="Kill commands operate only on managed containers.",
        formatter_class=_HELP_FORMATTER,
    )
    kill_cmd_sub = kill_cmd.add_subparsers(
        dest="resource",
        required=True,
        parser_class=_RichArgumentParser,
    )
    kill_container = kill_cmd_sub.add_parser(
        "container",
        help="Force kill one managed container by id.",
        formatter_class=_HELP_FORMATTER,
    )
    kill_container.add_argument("container_id")

    cleanup_cmd = sub.add_parser(
        "cleanup",
        help="Remove stale managed containers and orphaned workspaces.",
        description=(
            "Remove exited managed containers and workspaces left behind by crashed runs.\n"
            "Only workspaces older than --max-age-seconds are removed."
        ),
        formatter_class=_HELP_FORMATTER,
    )
    cleanup_cmd.add_argument("--max-age-seconds", type=float, default=3600.0)

    serve_cmd = sub.add_parser(
        "serve",
        help="Serve the HTTP execution API.",
        description="Expose /execute, /execute-template, and /health with Flask.",
        formatter_class=_HELP_FORMATTER,
    )
    serve_cmd.add_argument("--host", default="127.0.0.1")
    serve_cmd.add_argument("--port", type=int, default=8081)
    serve_cmd.add_argument("--templates", help="Optional JSON template file for /execute-template.")

    return parser


def _add_input_arguments(cmd: argparse.ArgumentParser) -> None:
    """Attach stdin and timeout options shared by `run` and `template`.

    Example:
        ```python
        _add_input_arguments(run_cmd)
        ```
    """
    group = cmd.add_mutually_exclusive_group()
    group.add_argument("--stdin", help="Text delivered to the program's standard input.")
    group.add_argument("--stdin-file", help="File whose contents are delivered to standard input.")
    cmd.add_argument("--timeout", type=float, help="Deadline in seconds (default from policy).")


def _configure_logging(verbose: bool) -> None:
    """Route library logs through Rich.

    Example:
        ```python
        _configure_logging(verbose=True)
        ```
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def build_engine(args: argparse.Namespace) -> DockerEngine:
    """Create a DockerEngine from global CLI connection flags.

    Example:
        ```python
        engine = build_engine(args)
        ```
    """
    return DockerEngine(
        docker_context=args.docker_context,
        docker_host=args.docker_host,
        ssh_host=args.ssh_host,
        ssh_user=args.ssh_user,
        ssh_port=args.ssh_port,
        ssh_key_path=args.ssh_key_path,
    )


def build_runner(args: argparse.Namespace, templates: str | None = None) -> CodeRunner:
    """Create a CodeRunner for the selected backend.

    Example:
        ```python
        runner = build_runner(args, templates="templates.json")
        ```
    """
    policy = RunnerPolicy.from_file(args.policy_file) if args.policy_file else RunnerPolicy()
    store = JsonTemplateStore(templates) if templates else None
    engine: ExecutionEngine
    if args.backend == "local":
        return CodeRunner(
            LocalEngine(),
            policy=policy,
            registry=DEFAULT_REGISTRY.without_isolation(),
            template_store=store,
        )
    if args.backend == "auto":
        engine = StrategyEngine(containerized=build_engine(args), native=LocalEngine())
    else:
        engine = build_engine(args)
    return CodeRunner(engine, policy=policy, template_store=store)


def _read_stdin_arg(args: argparse.Namespace) -> str | None:
    """Return program input from --stdin or --stdin-file.

    Example:
        ```python
        text = _read_stdin_arg(args)
        ```
    """
    if args.stdin_file:
        return Path(args.stdin_file).read_text(encoding="utf-8")
    return args.stdin


def _print_result(result: ExecutionResult) -> int:
    """Render an execution result and return the process exit code.

    Example:
        ```python
        code = _print_result(result)
        ```
    """
    style = "green" if result.ok else "red"
    title = f"{result.language or 'program'}: {result.status.value}"
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold")
    table.add_column()
    table.add_row("exit code", "-" if result.exit_code is None else str(result.exit_code))
    table.add_row("duration", f"{result.duration_seconds:.2f}s")
    if result.truncated:
        table.add_row("output", "[yellow]truncated[/yellow]")
    if result.infrastructure_error:
        table.add_row("infrastructure", Text(result.infrastructure_error))
    _CONSOLE.print(Panel.fit(table, title=title, border_style=style))
    if result.stdout:
        _CONSOLE.print(Panel(Text(result.stdout.rstrip("\n")), title="stdout", border_style="cyan"))
    if result.stderr:
        _CONSOLE.print(Panel(Text(result.stderr.rstrip("\n")), title="stderr", border_style="yellow"))
    return 0 if result.ok else 1


def _print_error(exc: BaseException) -> None:
    """Render an exception name and message in a red panel.

    Example:
        ```python
        _print_error(FileNotFoundError("hello.py"))
        ```
    """
    _CONSOLE.print(Panel.fit(f"[bold red]{type(exc).__name__}:[/bold red] {escape(str(exc))}", border_style="red"))


def _print_languages(runner: CodeRunner) -> None:
    """Render the language registry in a rich table.

    Example:
        ```python
        _print_languages(runner)
        ```
    """
    table = Table(title="Supported Languages")
    table.add_column("Language", style="cyan")
    table.add_column("File", style="magenta")
    table.add_column("Compile")
    table.add_column("Run")
    table.add_column("Image")
    for profile in runner.registry:
        compile_argv = profile.compile_argv()
        table.add_row(
            profile.language.value,
            profile.source_filename,
            " ".join(compile_argv) if compile_argv else "-",
            " ".join(profile.run_argv()),
            profile.isolation_image or "(native)",
        )
    _CONSOLE.print(table)


def _print_containers(rows: list[dict[str, Any]]) -> None:
    """Render managed containers in a rich table.

    Example:
        ```python
        _print_containers([{"id": "abc", "name": "safe-code-runner-1"}])
        ```
    """
    table = Table(title="Managed Containers")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("Image")
    table.add_column("State")
    table.add_column("Status")
    for row in rows:
        table.add_row(row["id"], row["name"], row["image"], row["state"], row["status"])
    _CONSOLE.print(table)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `scr` CLI command handler.

    Example:
        ```python
        code = main(["run", "hello.py", "--language", "python"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    _configure_logging(args.verbose)

    if args.command in {"run", "template", "languages", "serve"}:
        templates = getattr(args, "templates", None)
        with build_runner(args, templates=templates) as runner:
            if args.command == "languages":
                _print_languages(runner)
                return 0
            if args.command == "serve":
                create_app(runner).run(host=args.host, port=args.port)
                return 0
            try:
                if args.command == "run":
                    request = ExecutionRequest(
                        language=args.language,
                        code=Path(args.source).read_text(encoding="utf-8"),
                        stdin=_read_stdin_arg(args),
                        timeout_seconds=args.timeout,
                    )
                else:
                    request = ExecutionRequest(
                        template_id=parse_template_id(args.template_id),
                        stdin=_read_stdin_arg(args),
                        timeout_seconds=args.timeout,
                    )
                result = runner.execute(request)
            except (CodeRunnerError, OSError) as exc:
                _print_error(exc)
                return 2
            return _print_result(result)

    engine = build_engine(args)
    if args.command == "list" and args.resource == "containers":
        rows = [_to_jsonable(c) for c in engine.list_containers(all_states=True)]
        _print_containers(rows)
        return 0
    if args.command == "stop" and args.resource == "container":
        engine.stop_container(args.container_id, timeout_seconds=args.timeout_seconds)
        _CONSOLE.print(Panel.fit(f"Stopped container {escape(args.container_id)}", style="bold green"))
        return 0
    if args.command == "stop" and args.resource == "all":
        rows = [_to_jsonable(c) for c in engine.list_containers(all_states=True)]
        running = [
            row
            for row in rows
            if isinstance(row, dict)
            and isinstance(row.get("id"), str)
            and row.get("state") == "running"
        ]
        if not running:
            _CONSOLE.print(Panel.fit("No running managed containers to stop.", style="bold yellow"))
            return 0
        for row in running:
            engine.stop_container(row["id"], timeout_seconds=args.timeout_seconds)
        _CONSOLE.print(
            Panel.fit(
                f"Stopped {len(running)} managed container(s) with timeout {args.timeout_seconds}s",
                style="bold green",
            )
        )
        return 0
    if args.command == "kill" and args.resource == "container":
        engine.kill_container(args.container_id)
        _CONSOLE.print(Panel.fit(f"Killed container {escape(args.container_id)}", style="bold yellow"))
        return 0
    if args.command == "cleanup":
        policy = RunnerPolicy.from_file(args.policy_file) if args.policy_file else RunnerPolicy()
        summary: dict[str, Any] = {
            "removed_workspaces": WorkspaceManager(policy.scratch_root or None).sweep(args.max_age_seconds),
        }
        if args.backend == "local":
            _CONSOLE.print(Panel.fit(Pretty(summary), title="Cleanup Summary", border_style="green"))
            return 0
        try:
            summary.update(_to_jsonable(engine.cleanup_stale()))
        except (RuntimeError, OSError) as exc:
            logger.warning("container cleanup failed: %s", exc)
            _CONSOLE.print(Panel.fit(Pretty(summary), title="Cleanup Summary", border_style="yellow"))
            _print_error(exc)
            return 1
        _CONSOLE.print(Panel.fit(Pretty(summary), title="Cleanup Summary", border_style="green"))
        return 0

    parser.error("Unhandled command")
    return 2
