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
# IMAGEFORGE - COMMAND LINE
# -----------------------------------------------------------------------------
# Commands:
# - imageforge create PKG [PKG ...] (--output PATH | --replace-default)
# - imageforge restore
#
# Exit codes: 0 success, 1 build/restore failure, 2 usage error,
# 130 interrupted.
# -----------------------------------------------------------------------------

import argparse
import sys
from pathlib import Path

from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from imageforge.core.config import load_settings
from imageforge.core.errors import ImageForgeError
from imageforge.core.forge import ImageForge
from imageforge.domain.models import ImageArtifact, ImageOptions

console = Console()


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="imageforge", description="Build and manage runtime images")
    p.add_argument("--config", type=Path, default=None, help="Settings file (default: ./imageforge.yaml)")
    sub = p.add_subparsers(dest="cmd", required=True)

    create = sub.add_parser("create", help="Build an image containing the given packages")
    create.add_argument("packages", nargs="+", help="Package names to bake into the image")
    dest = create.add_mutually_exclusive_group(required=True)
    dest.add_argument("--output", "-o", type=Path, help="Path of the image to write")
    dest.add_argument(
        "--replace-default",
        action="store_true",
        help="Install the image as the default image (the previous one is backed up once)",
    )
    create.add_argument("--project", type=Path, default=None, help="Project directory (default: active project)")
    create.add_argument(
        "--no-incremental",
        dest="incremental",
        action="store_false",
        help="Build a fresh image instead of layering on the default image "
        "(drops the default image's convenience specializations)",
    )
    create.add_argument("--base-image", type=Path, default=None, help="Base image for an incremental build")
    create.add_argument("--precompile-script", type=Path, default=None, help="Script whose calls are precompiled")
    create.add_argument(
        "--precompile-statements", type=Path, default=None, help="File of recorded precompile statements"
    )
    create.add_argument("--infer", action="store_true", help="Also precompile statements inferred from loaded code")
    create.add_argument(
        "--direct-only",
        dest="include_transitive",
        action="store_false",
        help="Load only the named packages, not their dependencies",
    )
    create.add_argument("--cpu-target", default=None, help="CPU target for generated code")
    create.add_argument(
        "--runtime-arg",
        dest="runtime_args",
        action="append",
        default=[],
        help="Extra argument for the build runtime (repeatable; write dash values as --runtime-arg=-O3)",
    )
    create.add_argument("--default-image", type=Path, default=None, help="Default image slot path override")

    restore = sub.add_parser("restore", help="Restore the default image from its backup")
    restore.add_argument("--default-image", type=Path, default=None, help="Default image slot path override")
    return p


def _print_artifact(title: str, artifact: ImageArtifact) -> None:
    lines = [f"[bold green]{title}[/bold green]", "", f"Image: {artifact.image_path}"]
    if artifact.data_path:
        lines.append(f"Data:  {artifact.data_path}")
    if artifact.packages:
        lines.append(f"Packages: {', '.join(artifact.packages)}")
    console.print(Panel("\n".join(lines), border_style="green"))


def _cmd_create(forge: ImageForge, args: argparse.Namespace) -> int:
    options = ImageOptions(
        project=args.project,
        output_path=args.output,
        replace_default=args.replace_default,
        incremental=args.incremental,
        base_image=args.base_image,
        precompile_script=args.precompile_script,
        precompile_statements_file=args.precompile_statements,
        infer_statements=args.infer,
        include_transitive_dependencies=args.include_transitive,
        cpu_target=args.cpu_target,
        runtime_args=args.runtime_args,
        default_image=args.default_image,
    )
    artifact = forge.create_image(args.packages, options)
    _print_artifact("IMAGE CREATED", artifact)
    return 0


def _cmd_restore(forge: ImageForge, args: argparse.Namespace) -> int:
    artifact = forge.restore_default_image(args.default_image)
    _print_artifact("DEFAULT IMAGE RESTORED", artifact)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        forge = ImageForge(load_settings(args.config))
        if args.cmd == "create":
            return _cmd_create(forge, args)
        if args.cmd == "restore":
            return _cmd_restore(forge, args)
        raise AssertionError(f"unhandled command: {args.cmd}")

    except ValidationError as e:
        console.print(Panel(f"[bold red]Invalid options[/bold red]\n\n{escape(str(e))}", title="USAGE", border_style="red"))
        return 2

    except ImageForgeError as e:
        body = f"[bold red]{e.phase.upper()} FAILED[/bold red]\n\n{escape(e.message)}"
        if e.subject:
            body += f"\n\nOffending input: {escape(e.subject)}"
        cause = getattr(e, "cause", None) or getattr(e, "output", None)
        if cause:
            body += f"\n\n[dim]{escape(cause[-2000:])}[/dim]"
        console.print(Panel(body, title="BUILD HALT", border_style="red"))
        return 1

    except KeyboardInterrupt:
        console.print("[yellow]Interrupted; no image was published[/yellow]")
        return 130


if __name__ == "__main__":
    sys.exit(main())
