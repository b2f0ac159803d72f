from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterator, Mapping

from .errors import UnsupportedLanguageError


class Language(str, Enum):
    """Closed set of languages the runner knows how to build and run."""

    PYTHON = "python"
    JAVASCRIPT = "javascript"
    JAVA = "java"
    C = "c"
    CPP = "cpp"
    RUBY = "ruby"
    GO = "go"
    PHP = "php"
    PERL = "perl"
    RUST = "rust"


_ALIASES = {
    "c++": Language.CPP,
    "golang": Language.GO,
    "js": Language.JAVASCRIPT,
    "node": Language.JAVASCRIPT,
    "py": Language.PYTHON,
    "python3": Language.PYTHON,
}


@dataclass(frozen=True, slots=True)
class LanguageProfile:
    """How to materialize, build, and run one language.

    Command templates are argv tuples; `{source}` expands to the source file name.

    Example:
        ```python
        profile = LanguageProfile(Language.PYTHON, "py", None, None, ("python3", "{source}"), "python:3.12-slim")
        ```
    """

    language: Language
    file_extension: str
    entry_filename: str | None
    compile_command: tuple[str, ...] | None
    run_command: tuple[str, ...]
    isolation_image: str | None = None

    @property
    def source_filename(self) -> str:
        """Return the file name the source code is written to.

        Example:
            ```python
            name = profile.source_filename  # "Main.java" or "code.py"
            ```
        """
        return self.entry_filename or f"code.{self.file_extension}"

    @property
    def is_compiled(self) -> bool:
        """Return True when the profile has a separate compile step.

        Example:
            ```python
            needs_build = profile.is_compiled
            ```
        """
        return self.compile_command is not None

    def compile_argv(self) -> list[str] | None:
        """Render the compile command, if any.

        Example:
            ```python
            argv = profile.compile_argv()  # ["javac", "Main.java"]
            ```
        """
        if self.compile_command is None:
            return None
        return _render(self.compile_command, self.source_filename)

    def run_argv(self) -> list[str]:
        """Render the run command.

        Example:
            ```python
            argv = profile.run_argv()  # ["python3", "-u", "code.py"]
            ```
        """
        return _render(self.run_command, self.source_filename)


def _render(template: tuple[str, ...], source: str) -> list[str]:
    """Expand `{source}` placeholders in an argv template.

    Example:
        ```python
        argv = _render(("gcc", "{source}"), "code.c")
        ```
    """
    return [part.format(source=source) for part in template]


_DEFAULT_PROFILES: dict[Language, LanguageProfile] = {
    Language.PYTHON: LanguageProfile(
        language=Language.PYTHON,
        file_extension="py",
        entry_filename=None,
        compile_command=None,
        run_command=("python3", "-u", "{source}"),
        isolation_image="python:3.12-slim",
    ),
    Language.JAVASCRIPT: LanguageProfile(
        language=Language.JAVASCRIPT,
        file_extension="js",
        entry_filename=None,
        compile_command=None,
        run_command=("node", "{source}"),
        isolation_image="node:20-slim",
    ),
    Language.JAVA: LanguageProfile(
        language=Language.JAVA,
        file_extension="java",
        # javac requires the public class name to match the file name.
        entry_filename="Main.java",
        compile_command=("javac", "{source}"),
        run_command=("java", "-cp", ".", "Main"),
        isolation_image="eclipse-temurin:21-jdk",
    ),
    Language.C: LanguageProfile(
        language=Language.C,
        file_extension="c",
        entry_filename=None,
        compile_command=("gcc", "-O2", "-o", "code", "{source}", "-lm"),
        run_command=("./code",),
        isolation_image="gcc:14",
    ),
    Language.CPP: LanguageProfile(
        language=Language.CPP,
        file_extension="cpp",
        entry_filename=None,
        compile_command=("g++", "-O2", "-o", "code", "{source}"),
        run_command=("./code",),
        isolation_image="gcc:14",
    ),
    Language.RUBY: LanguageProfile(
        language=Language.RUBY,
        file_extension="rb",
        entry_filename=None,
        compile_command=None,
        run_command=("ruby", "{source}"),
        isolation_image="ruby:3.3-slim",
    ),
    Language.GO: LanguageProfile(
        language=Language.GO,
        file_extension="go",
        entry_filename=None,
        compile_command=None,
        run_command=("go", "run", "{source}"),
        isolation_image="golang:1.22",
    ),
    Language.PHP: LanguageProfile(
        language=Language.PHP,
        file_extension="php",
        entry_filename=None,
        compile_command=None,
        run_command=("php", "{source}"),
        isolation_image="php:8.3-cli",
    ),
    Language.PERL: LanguageProfile(
        language=Language.PERL,
        file_extension="pl",
        entry_filename=None,
        compile_command=None,
        run_command=("perl", "{source}"),
        isolation_image="perl:5.38-slim",
    ),
    Language.RUST: LanguageProfile(
        language=Language.RUST,
        file_extension="rs",
        entry_filename=None,
        compile_command=("rustc", "-O", "-A", "warnings", "-o", "code", "{source}"),
        run_command=("./code",),
        isolation_image="rust:1.79-slim",
    ),
}


def normalize_language(name: str) -> Language:
    """Map a user-supplied language name onto the closed `Language` set.

    Example:
        ```python
        lang = normalize_language(" C++ ")  # Language.CPP
        ```
    """
    key = name.strip().lower()
    if key in _ALIASES:
        return _ALIASES[key]
    try:
        return Language(key)
    except ValueError:
        raise UnsupportedLanguageError(name) from None


def _check_exhaustive(profiles: Mapping[Language, LanguageProfile]) -> None:
    """Fail when any `Language` member lacks a profile.

    Example:
        ```python
        _check_exhaustive(_DEFAULT_PROFILES)
        ```
    """
    missing = [lang.value for lang in Language if lang not in profiles]
    if missing:
        raise RuntimeError(f"Language profiles missing for: {', '.join(missing)}")


class LanguageRegistry:
    """Immutable lookup table from language name to `LanguageProfile`.

    Example:
        ```python
        profile = DEFAULT_REGISTRY.resolve("Python")
        ```
    """

    def __init__(self, profiles: Mapping[Language, LanguageProfile]) -> None:
        """Build a registry from a complete profile table.

        Example:
            ```python
            registry = LanguageRegistry(_DEFAULT_PROFILES)
            ```
        """
        _check_exhaustive(profiles)
        self._profiles = dict(profiles)

    def resolve(self, language: str) -> LanguageProfile:
        """Return the profile for `language` (case-insensitive).

        Example:
            ```python
            profile = registry.resolve("JAVA")
            ```
        """
        return self._profiles[normalize_language(language)]

    def __iter__(self) -> Iterator[LanguageProfile]:
        """Iterate profiles in `Language` declaration order.

        Example:
            ```python
            names = [p.language.value for p in registry]
            ```
        """
        return (self._profiles[lang] for lang in Language)

    def without_isolation(self) -> "LanguageRegistry":
        """Return a copy whose profiles run on the native toolchain.

        Example:
            ```python
            native = DEFAULT_REGISTRY.without_isolation()
            ```
        """
        return LanguageRegistry(
            {lang: replace(profile, isolation_image=None) for lang, profile in self._profiles.items()}
        )

    def with_images(self, images: Mapping[str, str]) -> "LanguageRegistry":
        """Return a copy with isolation images overridden per language.

        Example:
            ```python
            custom = DEFAULT_REGISTRY.with_images({"python": "sandbox-python"})
            ```
        """
        profiles = dict(self._profiles)
        for name, image in images.items():
            lang = normalize_language(name)
            profiles[lang] = replace(profiles[lang], isolation_image=image.strip() or None)
        return LanguageRegistry(profiles)


_check_exhaustive(_DEFAULT_PROFILES)
DEFAULT_REGISTRY = LanguageRegistry(_DEFAULT_PROFILES)
