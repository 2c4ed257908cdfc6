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
# PACKAGE SET RESOLVER
# -----------------------------------------------------------------------------
# Responsibility: Turn requested package names into the ordered list of
# packages the build session must load, dependencies first.
#
# Reads the project's Project.toml / Manifest.toml and nothing else. The
# package manager that wrote them is an external collaborator; we never
# install, update or rewrite anything.
#
# Ordering: Kahn's algorithm with a min-heap on package name, so the same
# manifest always yields the same order and builds stay reproducible.
# -----------------------------------------------------------------------------

import heapq
import tomllib
from pathlib import Path
from typing import Iterable

from pydantic import ValidationError
from rich.console import Console

from imageforge.core.config import active_project
from imageforge.core.errors import ResolutionError
from imageforge.domain.models import PackageId, ProjectDescriptor

console = Console()


def _read_toml(path: Path) -> dict:
    if not path.is_file():
        raise ResolutionError("File not found", subject=str(path))
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ResolutionError(f"Cannot parse: {e}", subject=str(path))


def _manifest_entries(data: dict, path: Path) -> dict:
    """Return the name -> [entry, ...] table for both manifest formats."""
    if "manifest_format" in data:
        entries = data.get("deps", {})
        if not isinstance(entries, dict):
            raise ResolutionError("'deps' must be a table", subject=str(path))
        return entries
    # Legacy format: every array of tables at top level is a package
    return {name: value for name, value in data.items() if isinstance(value, list)}


def _parse_entry(name: str, records, path: Path) -> PackageId:
    if not isinstance(records, list) or not records or not isinstance(records[0], dict):
        raise ResolutionError(f"Malformed entry for '{name}'", subject=str(path))
    if len(records) > 1:
        raise ResolutionError(f"Package name '{name}' is ambiguous in manifest", subject=str(path))

    record = records[0]
    deps = record.get("deps", [])
    if isinstance(deps, dict):
        deps = list(deps)
    if not isinstance(deps, list) or not all(isinstance(d, str) for d in deps):
        raise ResolutionError(f"Malformed deps for '{name}'", subject=str(path))

    try:
        return PackageId(
            name=name,
            uuid=record.get("uuid", ""),
            version=record.get("version"),
            tree_hash=record.get("git-tree-sha1"),
            path=record.get("path"),
            deps=tuple(sorted(set(deps))),
        )
    except ValidationError as e:
        raise ResolutionError(f"Invalid entry for '{name}': {e}", subject=str(path))


def load_manifest(project: ProjectDescriptor) -> dict[str, PackageId]:
    """
    Read every package pinned by the project's manifest.

    Raises:
        ResolutionError: Missing/malformed manifest, duplicate names, or a
            dependency edge pointing outside the manifest.
    """
    path = project.manifest_file
    data = _read_toml(path)

    packages: dict[str, PackageId] = {}
    for name, records in _manifest_entries(data, path).items():
        packages[name] = _parse_entry(name, records, path)

    for package in packages.values():
        for dep in package.deps:
            if dep not in packages:
                raise ResolutionError(
                    f"'{package.name}' depends on '{dep}', which is not in the manifest",
                    subject=str(path),
                )
    return packages


def declared_dependencies(project: ProjectDescriptor) -> set[str]:
    """Names listed under [deps] in Project.toml."""
    data = _read_toml(project.project_file)
    deps = data.get("deps", {})
    if not isinstance(deps, dict):
        raise ResolutionError("'deps' must be a table", subject=str(project.project_file))
    return set(deps)


def topological_order(packages: dict[str, PackageId], roots: Iterable[str]) -> list[PackageId]:
    """
    Order the dependency closure of `roots`, dependencies first.

    Raises:
        ResolutionError: The closure contains a cycle.
    """
    closure: set[str] = set()
    stack = list(roots)
    while stack:
        name = stack.pop()
        if name in closure:
            continue
        closure.add(name)
        stack.extend(packages[name].deps)

    pending = {name: len(packages[name].deps) for name in closure}
    dependents: dict[str, list[str]] = {name: [] for name in closure}
    for name in closure:
        for dep in packages[name].deps:
            dependents[dep].append(name)

    ready = [name for name, count in pending.items() if count == 0]
    heapq.heapify(ready)
    order: list[PackageId] = []
    while ready:
        name = heapq.heappop(ready)
        order.append(packages[name])
        for dependent in dependents[name]:
            pending[dependent] -= 1
            if pending[dependent] == 0:
                heapq.heappush(ready, dependent)

    if len(order) != len(closure):
        stuck = sorted(name for name, count in pending.items() if count > 0)
        raise ResolutionError(f"Dependency cycle among: {', '.join(stuck)}", subject=stuck[0])
    return order


class PackageResolver:
    """
    Resolves requested package names against one project.

    Project.toml and Manifest.toml are re-read on every resolve().
    """

    def __init__(self, project: Path | None = None) -> None:
        """
        Args:
            project: Project directory. Defaults to the active project.
        """
        self.project = ProjectDescriptor(root=Path(project) if project else active_project())

    def resolve(self, names: str | Iterable[str], include_transitive: bool = True) -> list[PackageId]:
        """
        Resolve `names` into a load order.

        Args:
            names: One package name or a non-empty collection of names.
            include_transitive: Include every dependency of the requested
                packages (default), or only the requested packages.

        Returns:
            Packages in dependency order (dependencies before dependents).

        Raises:
            ResolutionError: Unknown name, bad manifest, or dependency cycle.
        """
        requested = [names] if isinstance(names, str) else list(dict.fromkeys(names))
        if not requested:
            raise ResolutionError("No packages requested", subject=str(self.project.root))

        console.print(f"[cyan][RESOLVER] Resolving {', '.join(requested)} in {self.project.root}[/cyan]")

        declared = declared_dependencies(self.project)
        packages = load_manifest(self.project)

        for name in requested:
            if name not in packages:
                console.print(f"[red][RESOLVER] '{name}' is not in the manifest[/red]")
                raise ResolutionError(
                    "Package not found in project manifest", subject=name
                )
            if name not in declared:
                console.print(
                    f"[yellow][RESOLVER] '{name}' is not a direct dependency of the project; "
                    f"using the manifest's copy[/yellow]"
                )

        order = topological_order(packages, requested)
        if not include_transitive:
            wanted = set(requested)
            order = [p for p in order if p.name in wanted]

        console.print(f"[green][RESOLVER] Load order: {' -> '.join(p.name for p in order)}[/green]")
        return order


def resolve(
    project: Path | None, names: str | Iterable[str], include_transitive: bool = True
) -> list[PackageId]:
    """Resolve `names` in `project` (the active project when None)."""
    return PackageResolver(project).resolve(names, include_transitive=include_transitive)
