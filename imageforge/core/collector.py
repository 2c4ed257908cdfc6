# Copyright 2026 Pramod Kumar Voola
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

# -----------------------------------------------------------------------------
# PRECOMPILE STATEMENT COLLECTOR
# -----------------------------------------------------------------------------
# Responsibility: Gather the (callable, argument types) pairs that must be
# compiled into the image, from up to three sources:
#
# - a statements file in the runtime's trace format (one per line)
# - a script traced inside the build session
# - statements the runtime infers from the loaded code
#
# The result is a set: the same statement from two sources counts once.
# Statements naming symbols that are not loaded are kept here; the Session
# Host drops them when it executes them.
# -----------------------------------------------------------------------------

import re
from pathlib import Path
from typing import Iterable, Protocol

from rich.console import Console

from imageforge.core.errors import PrecompileFileError, PrecompileScriptError
from imageforge.domain.models import PrecompileSources, PrecompileStatement

console = Console()

_STATEMENT_RE = re.compile(r"^precompile\(\s*Tuple\{(?P<body>.*)\}\s*\)\s*;?$")
_TYPEOF_RE = re.compile(r"^typeof\((?P<callable>.+)\)$")

_OPEN = "{(["
_CLOSE = "})]"


class StatementTracer(Protocol):
    """What the collector needs from a live build session."""

    def trace_script(self, script: Path) -> list[str]: ...

    def infer_statements(self) -> list[str]: ...


def split_type_args(body: str) -> list[str]:
    """
    Split a comma-separated type list, ignoring commas inside brackets.

    >>> split_type_args("typeof(f), Vector{Tuple{Int64, String}}, Float64")
    ['typeof(f)', 'Vector{Tuple{Int64, String}}', 'Float64']

    Raises:
        ValueError: Unbalanced brackets or an empty element.
    """
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for char in body:
        if char in _OPEN:
            depth += 1
        elif char in _CLOSE:
            depth -= 1
            if depth < 0:
                raise ValueError("unbalanced brackets")
        if char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    if depth != 0:
        raise ValueError("unbalanced brackets")
    parts.append("".join(current).strip())
    if any(not part for part in parts):
        raise ValueError("empty type argument")
    return parts


def parse_statement(line: str) -> PrecompileStatement:
    """
    Parse one trace-format line.

    `precompile(Tuple{typeof(Example.hello), String})` becomes
    PrecompileStatement("Example.hello", ("String",)). A head that is not
    `typeof(...)` (e.g. `Type{Foo}` for constructors) is kept verbatim as
    the callable.

    Raises:
        ValueError: The line is not a precompile statement.
    """
    match = _STATEMENT_RE.match(line.strip())
    if not match:
        raise ValueError("not a precompile(Tuple{...}) statement")

    head, *arg_types = split_type_args(match.group("body"))
    typeof = _TYPEOF_RE.match(head)
    callable_ref = typeof.group("callable").strip() if typeof else head
    return PrecompileStatement(callable=callable_ref, arg_types=tuple(arg_types))


def parse_statements(lines: Iterable[str], origin: str = "<statements>") -> set[PrecompileStatement]:
    """Parse statements, skipping blanks, comments and malformed lines with a warning."""
    statements: set[PrecompileStatement] = set()
    for lineno, line in enumerate(lines, start=1):
        text = line.strip()
        if not text or text.startswith("#"):
            continue
        try:
            statements.add(parse_statement(text))
        except ValueError as e:
            console.print(
                f"[yellow][COLLECTOR] Skipping {origin}:{lineno}: {e}[/yellow]",
                highlight=False,
            )
    return statements


def read_statements_file(path: Path) -> set[PrecompileStatement]:
    """
    Read a recorded statements file.

    Raises:
        PrecompileFileError: The file cannot be read at all.
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise PrecompileFileError(f"Cannot read statements file: {e}", subject=str(path))

    statements = parse_statements(text.splitlines(), origin=str(path))
    console.print(f"[cyan][COLLECTOR] {len(statements)} statements from {path}[/cyan]")
    return statements


class PrecompileCollector:
    """
    Collects precompile statements from the configured sources.

    The script and infer sources need a live session (the `tracer`); the
    statements file does not, so the forge reads it before any process is
    started to fail fast on an unreadable file.
    """

    def __init__(self, tracer: StatementTracer | None = None) -> None:
        self._tracer = tracer

    def collect(self, sources: PrecompileSources) -> set[PrecompileStatement]:
        """
        Union of all statements named by `sources`.

        Raises:
            PrecompileFileError: Statements file unreadable.
            PrecompileScriptError: Script failed, or no session to run it in.
        """
        statements: set[PrecompileStatement] = set()

        if sources.statements_file is not None:
            statements |= read_statements_file(sources.statements_file)

        if sources.script is not None:
            statements |= self.trace(sources.script)

        if sources.infer:
            statements |= self.infer()

        console.print(f"[green][COLLECTOR] {len(statements)} unique statements collected[/green]")
        return statements

    def trace(self, script: Path) -> set[PrecompileStatement]:
        """Run `script` in the session; all-or-nothing."""
        if self._tracer is None:
            raise PrecompileScriptError("A build session is required to run the script", subject=str(script))
        if not Path(script).is_file():
            raise PrecompileScriptError("Precompile script not found", subject=str(script))

        console.print(f"[cyan][COLLECTOR] Tracing script: {script}[/cyan]")
        lines = self._tracer.trace_script(Path(script))
        statements = parse_statements(lines, origin=str(script))
        console.print(f"[cyan][COLLECTOR] {len(statements)} statements traced from {script}[/cyan]")
        return statements

    def infer(self) -> set[PrecompileStatement]:
        if self._tracer is None:
            console.print("[yellow][COLLECTOR] No session; nothing to infer from[/yellow]")
            return set()
        statements = parse_statements(self._tracer.infer_statements(), origin="<inferred>")
        console.print(f"[cyan][COLLECTOR] {len(statements)} statements inferred from loaded code[/cyan]")
        return statements
