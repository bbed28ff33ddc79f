"""Language registry: build and run command templates per language.

Every supported language is a single ``LanguageConfig`` record. Templates are
argument tuples whose items are ``str.format`` patterns over:

- ``{source}``   the submission copied into the workspace
- ``{artifact}`` the build output (or the source, for interpreted languages)
- ``{stem}``     the source (build) or artifact (run) name without extension
- ``{Stem}``     the same with its first letter upper-cased
- ``{workdir}``  the workspace directory

Adding a language means adding a record below; nothing else changes.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

from owlquest.errors import ConfigError
from owlquest.models import ResourceLimits

_DEFAULT_LIMITS = ResourceLimits(time_limit=2.0, memory_limit_mb=256)
_JVM_LIMITS = ResourceLimits(time_limit=4.0, memory_limit_mb=1024)


@dataclass(frozen=True)
class LanguageConfig:
    name: str
    extensions: tuple[str, ...]
    run: tuple[str, ...]
    build: tuple[str, ...] | None = None
    artifact: str = "{stem}"
    limits: ResourceLimits = field(default=_DEFAULT_LIMITS)

    @property
    def compiled(self) -> bool:
        return self.build is not None

    @property
    def toolchain(self) -> str:
        """The executable that must be on PATH for this language."""
        return (self.build or self.run)[0]

    def is_available(self) -> bool:
        return shutil.which(self.toolchain) is not None

    def artifact_path(self, source: Path, workdir: Path) -> Path:
        if not self.compiled:
            return source
        return workdir / self.artifact.format(**_placeholders(source, workdir))

    def build_command(self, source: Path, workdir: Path) -> list[str]:
        if self.build is None:
            raise ConfigError(f"'{self.name}': language has no build step")
        values = _placeholders(source, workdir)
        values["artifact"] = str(self.artifact_path(source, workdir))
        return [arg.format(**values) for arg in self.build]

    def run_command(self, artifact: Path, workdir: Path) -> list[str]:
        values = _placeholders(artifact, workdir)
        values["artifact"] = str(artifact)
        return [arg.format(**values) for arg in self.run]


def _placeholders(path: Path, workdir: Path) -> dict[str, str]:
    stem = path.stem
    return {
        "source": str(path),
        "stem": stem,
        "Stem": stem[:1].upper() + stem[1:],
        "workdir": str(workdir),
    }


_LANGUAGES = (
    LanguageConfig(
        name="ada",
        extensions=("adb", "ads"),
        build=("gnatmake", "-g", "-O2", "-D", "{workdir}", "-o", "{artifact}", "{source}"),
        run=("{artifact}",),
    ),
    LanguageConfig(
        name="c",
        extensions=("c",),
        build=("gcc", "-g", "-O2", "-std=gnu2x", "-o", "{artifact}", "{source}", "-lm"),
        run=("{artifact}",),
    ),
    LanguageConfig(
        name="cpp",
        extensions=("cpp", "cc", "cxx", "c++", "C"),
        build=("g++", "-g", "-O2", "-std=gnu++20", "-o", "{artifact}", "{source}", "-lpthread"),
        run=("{artifact}",),
    ),
    LanguageConfig(
        name="crystal",
        extensions=("cr",),
        build=("crystal", "build", "-O", "2", "--no-color", "{source}", "-o", "{artifact}"),
        run=("{artifact}",),
    ),
    LanguageConfig(
        name="dart",
        extensions=("dart",),
        build=("dart", "compile", "exe", "-o", "{artifact}", "{source}"),
        run=("{artifact}",),
    ),
    LanguageConfig(
        name="elixir",
        extensions=("ex", "exs"),
        run=("elixir", "{artifact}"),
    ),
    LanguageConfig(
        name="erlang",
        extensions=("erl",),
        build=("erlc", "-o", "{workdir}", "{source}"),
        artifact="{stem}.beam",
        run=("erl", "-noshell", "-pa", "{workdir}", "-run", "{stem}", "-s", "init", "stop"),
    ),
    LanguageConfig(
        name="go",
        extensions=("go",),
        build=("go", "build", "-o", "{artifact}", "{source}"),
        run=("{artifact}",),
    ),
    LanguageConfig(
        name="haskell",
        extensions=("hs",),
        build=(
            "ghc", "-O2", "-ferror-spans", "-threaded", "-rtsopts",
            "-outputdir", "{workdir}", "-o", "{artifact}", "{source}",
        ),
        run=("{artifact}",),
    ),
    LanguageConfig(
        name="java",
        extensions=("java",),
        build=("javac", "-encoding", "UTF-8", "-d", "{workdir}", "{source}"),
        artifact="{stem}.class",
        run=("java", "-Dfile.encoding=UTF-8", "-XX:+UseSerialGC", "-Xss64m", "-cp", "{workdir}", "{stem}"),
        limits=_JVM_LIMITS,
    ),
    LanguageConfig(
        name="javascript",
        extensions=("js", "mjs"),
        run=("node", "{artifact}"),
    ),
    LanguageConfig(
        name="julia",
        extensions=("jl",),
        run=("julia", "{artifact}"),
        limits=ResourceLimits(time_limit=6.0, memory_limit_mb=512),
    ),
    LanguageConfig(
        name="kotlin",
        extensions=("kt",),
        build=("kotlinc", "{source}", "-d", "{workdir}"),
        artifact="{Stem}Kt.class",
        run=("kotlin", "-J-XX:+UseSerialGC", "-J-Xss64m", "-cp", "{workdir}", "{stem}"),
        limits=_JVM_LIMITS,
    ),
    LanguageConfig(
        name="lean",
        extensions=("lean",),
        run=("lean", "--run", "{artifact}"),
    ),
    LanguageConfig(
        name="lua",
        extensions=("lua",),
        run=("lua", "{artifact}"),
    ),
    LanguageConfig(
        name="ocaml",
        extensions=("ml",),
        build=(
            "ocamlfind", "ocamlopt", "-package", "str,unix", "-linkpkg",
            "{source}", "-o", "{artifact}",
        ),
        run=("{artifact}",),
    ),
    LanguageConfig(
        name="odin",
        extensions=("odin",),
        build=("odin", "build", "{source}", "-file", "-out:{artifact}"),
        run=("{artifact}",),
    ),
    LanguageConfig(
        name="python",
        extensions=("py", "py3"),
        run=("python3", "{artifact}"),
    ),
    LanguageConfig(
        name="ruby",
        extensions=("rb",),
        run=("ruby", "--yjit", "{artifact}"),
    ),
    LanguageConfig(
        name="rust",
        extensions=("rs",),
        build=("rustc", "-C", "opt-level=3", "-o", "{artifact}", "{source}"),
        run=("{artifact}",),
    ),
    LanguageConfig(
        name="typescript",
        extensions=("ts",),
        build=("tsc", "--module", "commonjs", "--outDir", "{workdir}", "{source}"),
        artifact="{stem}.js",
        run=("node", "{artifact}"),
    ),
    LanguageConfig(
        name="zig",
        extensions=("zig",),
        build=("zig", "build-exe", "-O", "ReleaseFast", "-femit-bin={artifact}", "{source}"),
        run=("{artifact}",),
    ),
)

REGISTRY: MappingProxyType[str, LanguageConfig] = MappingProxyType(
    {lang.name: lang for lang in _LANGUAGES}
)
_BY_EXTENSION: MappingProxyType[str, LanguageConfig] = MappingProxyType(
    {ext: lang for lang in _LANGUAGES for ext in lang.extensions}
)


def lookup(name: str) -> LanguageConfig:
    """Return the config for a language name such as ``"cpp"``."""
    try:
        return REGISTRY[name]
    except KeyError:
        raise ConfigError(f"Language not supported: {name}") from None


def lookup_extension(ext: str) -> LanguageConfig:
    try:
        return _BY_EXTENSION[ext.lstrip(".")]
    except KeyError:
        raise ConfigError(f"Language not supported: .{ext.lstrip('.')}") from None


def detect(path: Path) -> LanguageConfig:
    """Guess the language of a source file from its extension."""
    if not path.suffix:
        raise ConfigError(f"'{path}': cannot detect language without a file extension")
    return lookup_extension(path.suffix)
