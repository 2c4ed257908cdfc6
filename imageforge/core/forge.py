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
# THE FORGE - IMAGE BUILD ORCHESTRATOR
# -----------------------------------------------------------------------------
# Responsibility: Run the complete image pipeline for one request.
# Connects: Resolver -> Collector -> Session Host -> Linker -> Default Slot
#
# Steps run strictly in order on the calling thread. Any failure aborts the
# whole build: the output path (or default slot) is left as it was, and the
# runtime process is torn down.
#
# Base image selection for incremental builds:
#   explicit base_image option > current default image > fresh runtime
# -----------------------------------------------------------------------------

from contextlib import nullcontext
from pathlib import Path
from typing import Iterable

from rich.console import Console
from rich.markup import escape

from imageforge.core.collector import read_statements_file
from imageforge.core.config import Settings, load_settings
from imageforge.core.errors import ImageForgeError, PrecompileScriptError
from imageforge.core.journal import BuildJournal
from imageforge.core.linker import ImageLinker
from imageforge.core.resolver import PackageResolver
from imageforge.core.session import BuildSession
from imageforge.core.slot import DefaultImageSlot
from imageforge.domain.models import ImageArtifact, ImageOptions
from imageforge.infra.atomic import staging_dir

console = Console()


class ImageForge:
    """
    Builds runtime images and manages the default image slot.

    Settings are loaded once and shared by every build; each build gets its
    own journal and session.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or load_settings()

    def slot(self, path: Path | None = None) -> DefaultImageSlot:
        return DefaultImageSlot(path or self.settings.default_image)

    def _base_image(self, options: ImageOptions, slot: DefaultImageSlot) -> Path | None:
        if not options.incremental:
            return None
        if options.base_image is not None:
            return options.base_image
        if slot.exists():
            return slot.path
        console.print(
            f"[yellow][FORGE] No default image at {slot.path}; building on a fresh runtime[/yellow]"
        )
        return None

    def create_image(
        self, packages: str | Iterable[str], options: ImageOptions | None = None, **kwargs
    ) -> ImageArtifact:
        """
        Build an image containing `packages`.

        Args:
            packages: One package name or several.
            options: Build options; alternatively pass them as keyword
                arguments (e.g. output_path="Example.img").

        Returns:
            The published ImageArtifact (in the default slot when
            replace_default is set).

        Raises:
            ResolutionError, PrecompileFileError, PrecompileScriptError,
            SessionError, LinkError, InstallError.
        """
        options = options or ImageOptions(**kwargs)
        requested = [packages] if isinstance(packages, str) else list(packages)
        slot = self.slot(options.default_image)
        target = slot.path if options.replace_default else Path(options.output_path)

        journal = BuildJournal(self.settings.build_log_dir)
        journal.log("BUILD_STARTED", f"{', '.join(requested)} -> {target}")
        console.print(f"[bold cyan][FORGE] Building image for {', '.join(requested)} -> {target}[/bold cyan]")

        try:
            order = PackageResolver(options.project).resolve(
                requested, include_transitive=options.include_transitive_dependencies
            )
            journal.log("RESOLVED", " -> ".join(p.name for p in order))
            journal.save_request(
                {
                    "packages": requested,
                    "options": options.model_dump(mode="json"),
                    "load_order": [p.model_dump(mode="json") for p in order],
                }
            )

            statements = set()
            if options.precompile_statements_file is not None:
                statements = read_statements_file(options.precompile_statements_file)
                journal.log("STATEMENTS_READ", f"{len(statements)} from {options.precompile_statements_file}")
            if options.precompile_script is not None and not options.precompile_script.is_file():
                raise PrecompileScriptError("Precompile script not found", subject=str(options.precompile_script))

            # the statements file was read above, before any process started
            session_sources = options.sources().model_copy(update={"statements_file": None})
            base_image = self._base_image(options, slot)

            staging = staging_dir(slot.path) if options.replace_default else nullcontext(None)
            with staging as stage:
                output = stage / slot.path.name if stage is not None else target

                with BuildSession(
                    self.settings,
                    base_image=base_image,
                    runtime_args=options.runtime_args,
                    journal=journal,
                ) as session:
                    session.run(order, statements, session_sources)
                    artifact = ImageLinker(self.settings, journal).link(
                        session, output, incremental=options.incremental, cpu_target=options.cpu_target
                    )

                if options.replace_default:
                    artifact = slot.replace(artifact)
                    journal.log("INSTALLED", str(slot.path))

            journal.log("BUILD_COMPLETE", str(artifact.image_path))
            console.print(f"[bold green][FORGE] Image ready: {artifact.image_path}[/bold green]")
            return artifact

        except ImageForgeError as e:
            journal.log("BUILD_FAILED", str(e))
            console.print(f"[red][FORGE] Build failed during {e.phase}: {escape(str(e))}[/red]", highlight=False)
            raise

        except KeyboardInterrupt:
            journal.log("BUILD_CANCELLED")
            console.print(f"[yellow][FORGE] Build cancelled; {target} untouched[/yellow]")
            raise

        finally:
            journal.finalize()

    def restore_default_image(self, path: Path | None = None) -> ImageArtifact:
        """
        Restore the default image from its backup.

        Raises:
            NoBackupError: No backup exists; the slot is unchanged.
        """
        return self.slot(path).restore()


def create_image(
    packages: str | Iterable[str],
    options: ImageOptions | None = None,
    settings: Settings | None = None,
    **kwargs,
) -> ImageArtifact:
    """Build an image with a one-off ImageForge."""
    return ImageForge(settings).create_image(packages, options, **kwargs)


def restore_default_image(path: Path | None = None, settings: Settings | None = None) -> ImageArtifact:
    """Restore the default image slot from its backup."""
    return ImageForge(settings).restore_default_image(path)
