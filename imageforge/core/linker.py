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
# THE IMAGE LINKER ADAPTER
# -----------------------------------------------------------------------------
# Responsibility: Turn a READY build session into an image artifact on disk.
#
# 1. The runtime serializes its state into an object file (plus, if its
#    constant-embedding strategy needs one, a companion data file).
# 2. The external linker turns the object file into a loadable image.
# 3. The outputs are moved into place: companion data first, image last.
#
# Everything is built in a staging directory beside the output. If any step
# fails or is interrupted, the staging directory is deleted and the output
# path is left exactly as it was.
#
# Known limit: data and image are two renames. Between them a reader can
# see the new .data next to the old image.
#
# Incremental vs fresh:
# - incremental: only the delta is serialized and composed with the base
#   image, so every package of the base survives. Nothing can be removed.
# - fresh: only the requested packages plus runtime essentials. Any
#   convenience specializations the default image carried are lost.
# -----------------------------------------------------------------------------

from pathlib import Path

from rich.console import Console

from imageforge.core.config import Settings
from imageforge.core.errors import BuildTimeoutError, LinkError, SessionError
from imageforge.core.journal import BuildJournal
from imageforge.core.session import BuildSession
from imageforge.domain.models import ImageArtifact
from imageforge.infra.atomic import atomic_copy, publish, staging_dir
from imageforge.infra.runtime_client import RuntimeRequestError
from imageforge.infra.toolchain import ToolchainError, run_linker

console = Console()

DATA_SUFFIX = ".data"
OBJECT_SUFFIX = ".o"


def companion_data_path(image_path: Path) -> Path:
    """Companion data file sharing the image's stem."""
    return image_path.with_suffix(DATA_SUFFIX)


class ImageLinker:
    """Emits, links and publishes image artifacts."""

    def __init__(self, settings: Settings, journal: BuildJournal | None = None) -> None:
        self.settings = settings
        self.journal = journal or BuildJournal()

    def link(
        self,
        session: BuildSession,
        output_path: Path,
        incremental: bool = True,
        cpu_target: str | None = None,
    ) -> ImageArtifact:
        """
        Build the image for `session` and publish it at `output_path`.

        Args:
            session: A READY build session.
            output_path: Destination of the loadable image.
            incremental: Compose with the session's base image (True) or
                serialize a fresh image (False).
            cpu_target: Forwarded to the runtime's code generator.

        Returns:
            The published ImageArtifact.

        Raises:
            LinkError: Emit or link failed. `output_path` is untouched.
            BuildTimeoutError: The session timed out while emitting.
        """
        output_path = Path(output_path)
        if output_path.suffix == DATA_SUFFIX:
            raise LinkError(f"Output may not use the {DATA_SUFFIX} suffix", subject=str(output_path))

        if not incremental:
            console.print(
                "[yellow][LINKER] Fresh build: specializations carried by the default "
                "image (e.g. interactive shell fast paths) will not be in this image[/yellow]"
            )
        elif session.base_image is None:
            console.print("[yellow][LINKER] Incremental build without a base image[/yellow]")

        data_target = companion_data_path(output_path)
        self.journal.log("LINK_STARTED", f"{output_path} incremental={incremental}")

        with staging_dir(output_path) as stage:
            object_file = stage / f"{output_path.stem}{OBJECT_SUFFIX}"
            staged_data = stage / f"{output_path.stem}{DATA_SUFFIX}"
            staged_image = stage / output_path.name

            console.print(f"[cyan][LINKER] Emitting object file: {object_file.name}[/cyan]")
            try:
                reply = session.emit_object(object_file, incremental, cpu_target, data_path=staged_data)
            except RuntimeRequestError as e:
                self.journal.log("EMIT_FAILED", str(e))
                raise LinkError(f"Runtime could not emit object file: {e}", subject=str(output_path), output=str(e))
            except BuildTimeoutError:
                self.journal.log("EMIT_FAILED", "timeout")
                raise
            except SessionError as e:
                self.journal.log("EMIT_FAILED", str(e))
                raise LinkError(
                    f"Session failed while emitting: {e.message}",
                    subject=str(output_path),
                    output=e.cause or "",
                )

            if not object_file.is_file():
                raise LinkError("Runtime reported success but wrote no object file", subject=str(output_path))

            packages = [str(name) for name in reply.get("packages") or session.packages]
            if incremental:
                missing = sorted(set(session.base_packages) - set(packages))
                if missing:
                    raise LinkError(
                        f"Incremental image would drop base packages: {', '.join(missing)}",
                        subject=str(output_path),
                    )

            data_source = Path(reply["data"]) if reply.get("data") else None
            if data_source is not None and not data_source.is_file():
                raise LinkError(f"Companion data file missing: {data_source}", subject=str(output_path))

            console.print(f"[cyan][LINKER] Linking {staged_image.name}...[/cyan]")
            try:
                run_linker(
                    self.settings.linker_command,
                    staged_image,
                    [object_file],
                    extra_args=self.settings.link_args,
                    timeout=self.settings.link_timeout_seconds,
                )
            except ToolchainError as e:
                console.print(f"[red][LINKER] Link FAILED (exit: {e.exit_code})[/red]")
                self.journal.log("LINK_FAILED", f"exit={e.exit_code} {e.output[:200]}")
                raise LinkError(str(e), subject=str(output_path), exit_code=e.exit_code, output=e.output)

            # Publish: data first, image last; the image is what readers look for
            if data_source is not None:
                if data_source.parent == stage:
                    publish(data_source, data_target)
                else:
                    atomic_copy([(data_source, data_target)])
            if self.settings.keep_object:
                publish(object_file, output_path.with_suffix(OBJECT_SUFFIX))
            replacing = output_path.is_file()
            publish(staged_image, output_path)

        # only the companion of an image that was just replaced is removed
        if data_source is None and replacing and data_target.is_file():
            data_target.unlink()

        self.journal.log("LINKED", str(output_path))
        console.print(f"[green][LINKER] Image written: {output_path}[/green]")

        return ImageArtifact(
            image_path=output_path,
            data_path=data_target if data_source is not None else None,
            packages=packages,
            incremental=incremental,
            base_image=session.base_image if incremental else None,
            cpu_target=cpu_target,
        )
