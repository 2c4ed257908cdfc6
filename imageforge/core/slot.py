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
# THE DEFAULT IMAGE MANAGER
# -----------------------------------------------------------------------------
# Responsibility: Own the installation-wide default image slot and its
# one-time backup.
#
# Layout (next to the slot image, e.g. default.so):
# - default.so / default.data: the slot
# - default.backup.so / default.backup.data: the backup
#
# Rules:
# - The backup is taken on the first replace only and is never overwritten.
# - Restore copies backup -> slot and keeps the backup for later restores.
# - Every mutation stages copies beside the target and flips them with
#   os.replace, so a runtime starting concurrently reads the old image or
#   the new one, never a torn file.
#
# The slot path is always passed in; nothing here reads global state.
# -----------------------------------------------------------------------------

from pathlib import Path

from rich.console import Console

from imageforge.core.errors import InstallError, NoBackupError
from imageforge.core.linker import DATA_SUFFIX, companion_data_path
from imageforge.domain.models import ImageArtifact
from imageforge.infra.atomic import atomic_copy

console = Console()


def backup_path_for(slot_path: Path) -> Path:
    """default.so -> default.backup.so"""
    return slot_path.with_name(f"{slot_path.stem}.backup{slot_path.suffix}")


class DefaultImageSlot:
    """
    The default image slot at an explicit path.

    Only one writer at a time: callers must not replace or restore the
    same slot concurrently.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        if self.path.suffix == DATA_SUFFIX:
            raise InstallError(f"Slot may not use the {DATA_SUFFIX} suffix", subject=str(self.path))
        self.data_path = companion_data_path(self.path)
        self.backup_path = backup_path_for(self.path)
        # from the slot stem: default -> default.backup.data, never default.data
        self.backup_data_path = self.path.with_name(f"{self.path.stem}.backup{DATA_SUFFIX}")

    def exists(self) -> bool:
        return self.path.is_file()

    def has_backup(self) -> bool:
        return self.backup_path.is_file()

    def current(self) -> ImageArtifact | None:
        """The artifact currently in the slot, if any."""
        if not self.exists():
            return None
        return ImageArtifact(
            image_path=self.path,
            data_path=self.data_path if self.data_path.is_file() else None,
        )

    def _install(self, image: Path, data: Path | None, target: Path, target_data: Path) -> None:
        """Copy an image (+ data) pair over a target pair, data first."""
        copies = []
        if data is not None:
            copies.append((data, target_data))
        copies.append((image, target))
        atomic_copy(copies)
        if data is None and target_data.exists():
            target_data.unlink()

    def _backup(self) -> None:
        """Copy the slot to the backup pair, unless a backup already exists."""
        if self.has_backup():
            console.print(f"[dim][SLOT] Backup already present: {self.backup_path}[/dim]")
            return
        if not self.exists():
            console.print(f"[yellow][SLOT] No default image at {self.path}; nothing to back up[/yellow]")
            return

        data = self.data_path if self.data_path.is_file() else None
        self._install(self.path, data, self.backup_path, self.backup_data_path)
        console.print(f"[cyan][SLOT] Default image backed up to {self.backup_path}[/cyan]")

    def replace(self, artifact: ImageArtifact) -> ImageArtifact:
        """
        Install `artifact` as the default image.

        Returns:
            The artifact as installed in the slot.

        Raises:
            InstallError: The artifact is missing or the copy failed. The slot
                keeps its previous content.
        """
        if not Path(artifact.image_path).is_file():
            raise InstallError("Image to install not found", subject=str(artifact.image_path))

        console.print(f"[cyan][SLOT] Replacing default image: {self.path}[/cyan]")
        try:
            self._backup()
            self._install(Path(artifact.image_path), artifact.data_path, self.path, self.data_path)
        except OSError as e:
            console.print(f"[red][SLOT] Replace failed: {e}[/red]")
            raise InstallError(f"Cannot replace default image: {e}", subject=str(self.path))

        console.print(f"[green][SLOT] Default image replaced: {self.path}[/green]")
        return artifact.model_copy(
            update={"image_path": self.path, "data_path": self.data_path if artifact.data_path else None}
        )

    def restore(self) -> ImageArtifact:
        """
        Put the backed-up image back in the slot. The backup is kept.

        Raises:
            NoBackupError: The slot was never replaced; nothing is changed.
            InstallError: The copy failed; the slot keeps its content.
        """
        if not self.has_backup():
            console.print(f"[red][SLOT] No backup to restore for {self.path}[/red]")
            raise NoBackupError("No backup of the default image exists", subject=str(self.backup_path))

        data = self.backup_data_path if self.backup_data_path.is_file() else None
        try:
            self._install(self.backup_path, data, self.path, self.data_path)
        except OSError as e:
            console.print(f"[red][SLOT] Restore failed: {e}[/red]")
            raise InstallError(f"Cannot restore default image: {e}", subject=str(self.path))

        console.print(f"[green][SLOT] Default image restored from {self.backup_path}[/green]")
        return ImageArtifact(image_path=self.path, data_path=self.data_path if data else None)
