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
# ATOMIC FILE PUBLISHING
# -----------------------------------------------------------------------------
# Responsibility: Stage files next to their destination, then move them into
# place with os.replace. A reader of the destination sees either the old file
# or the complete new one, never a torn write.
#
# Staging always happens in the destination directory so the final rename
# never crosses a filesystem boundary.
# -----------------------------------------------------------------------------

import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


@contextmanager
def staging_dir(target: Path) -> Iterator[Path]:
    """
    Yield a scratch directory beside `target`, removed on exit.

    Whatever is still inside when the block ends (success or failure) is
    deleted with it.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    path = Path(tempfile.mkdtemp(prefix=f".{target.name}.", suffix=".staging", dir=target.parent))
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)


def _stage_copy(src: Path, dst: Path) -> Path:
    """Copy `src` to a temporary file in `dst`'s directory."""
    dst.parent.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(prefix=f".{dst.name}.", suffix=".tmp", dir=dst.parent)
    os.close(fd)
    tmp = Path(name)
    try:
        shutil.copyfile(src, tmp)
        shutil.copymode(src, tmp)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    return tmp


def atomic_copy(copies: list[tuple[Path, Path]]) -> None:
    """
    Copy each (src, dst) pair so every dst flips atomically.

    All sources are staged before the first rename, so a failed read never
    leaves the group half-updated. Renames happen in list order; callers put
    the file that identifies the group (the image) last.

    Raises:
        OSError: Reading a source or renaming failed. Staged files are removed.
    """
    staged: list[tuple[Path, Path]] = []
    try:
        for src, dst in copies:
            staged.append((_stage_copy(src, dst), dst))
        for tmp, dst in staged:
            os.replace(tmp, dst)
    finally:
        for tmp, _ in staged:
            tmp.unlink(missing_ok=True)


def publish(staged: Path, dst: Path) -> None:
    """Move an already-staged file over `dst`."""
    dst.parent.mkdir(parents=True, exist_ok=True)
    os.replace(staged, dst)
