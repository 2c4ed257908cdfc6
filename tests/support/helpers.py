"""Shared helpers for writing projects and fake images."""

import json
import sys
import uuid
from pathlib import Path

SUPPORT_DIR = Path(__file__).parent
FAKE_RUNTIME = SUPPORT_DIR / "fake_runtime.py"
FAKE_LINKER = SUPPORT_DIR / "fake_linker.py"

RUNTIME_COMMAND = [sys.executable, str(FAKE_RUNTIME)]
LINKER_COMMAND = [sys.executable, str(FAKE_LINKER)]

# name -> direct dependencies
EXAMPLE_GRAPH = {
    "Example": [],
    "JSON3": ["Parsers", "StructTypes"],
    "Parsers": [],
    "StructTypes": [],
    "Plots": ["JSON3", "Colors"],
    "Colors": ["FixedPoint"],
    "FixedPoint": [],
    "BrokenPkg": [],
}


def package_uuid(name: str) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"pkg:{name}"))


def write_project(root: Path, graph: dict, direct: list | None = None, legacy: bool = False) -> Path:
    """Write a Project.toml / Manifest.toml pair for `graph`."""
    root.mkdir(parents=True, exist_ok=True)
    direct = list(graph) if direct is None else direct

    project = ['name = "App"', f'uuid = "{package_uuid("App")}"', "", "[deps]"]
    project += [f'{name} = "{package_uuid(name)}"' for name in direct]
    (root / "Project.toml").write_text("\n".join(project) + "\n")

    manifest = [] if legacy else ['julia_version = "1.10.0"', 'manifest_format = "2.0"', ""]
    for name, deps in graph.items():
        manifest.append(f"[[{name}]]" if legacy else f"[[deps.{name}]]")
        manifest.append(f'uuid = "{package_uuid(name)}"')
        manifest.append('version = "1.0.0"')
        if deps:
            manifest.append("deps = [" + ", ".join(f'"{d}"' for d in deps) + "]")
        manifest.append("")
    (root / "Manifest.toml").write_text("\n".join(manifest))
    return root


def write_image(path: Path, packages: list, specializations: list | None = None) -> Path:
    """Write an image the fake runtime can start from."""
    path.parent.mkdir(parents=True, exist_ok=True)
    document = {"format": "fake-image", "packages": packages, "specializations": specializations or []}
    path.write_text(json.dumps(document))
    return path


def read_image(path: Path) -> dict:
    return json.loads(Path(path).read_text())
