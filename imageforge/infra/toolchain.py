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
# TOOLCHAIN - LINKER INVOCATION
# -----------------------------------------------------------------------------
# Responsibility: Run the external linker that turns an image object file
# into a loadable image. Uses subprocess for lean, direct execution.
#
# The linker is treated as a blocking call with a hard timeout; on timeout
# or interruption subprocess.run kills it before the exception propagates.
# -----------------------------------------------------------------------------

import subprocess
from pathlib import Path
from typing import Sequence

from rich.console import Console
from rich.markup import escape

console = Console()


class ToolchainError(Exception):
    """Raised when the linker fails, times out, or cannot be found."""

    def __init__(self, message: str, exit_code: int = -1, output: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output


def run_linker(
    command: Sequence[str],
    output: Path,
    inputs: Sequence[Path],
    extra_args: Sequence[str] = (),
    timeout: float = 600,
) -> str:
    """
    Link `inputs` into `output`.

    Runs `[*command, "-o", output, *inputs, *extra_args]`.

    Args:
        command: Linker command line (e.g. ["cc", "-shared"]).
        output: File the linker must produce.
        inputs: Object files.
        extra_args: Additional linker flags.
        timeout: Seconds before the linker is killed.

    Returns:
        Combined linker output.

    Raises:
        ToolchainError: Non-zero exit, timeout, missing executable, or no output file.
    """
    argv = [*command, "-o", str(output), *(str(p) for p in inputs), *extra_args]
    console.print(f"[dim][TOOLCHAIN] {escape(' '.join(argv))}[/dim]", highlight=False)

    try:
        result = subprocess.run(argv, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as e:
        raise ToolchainError(f"Linker not found: {command[0]!r} ({e})")
    except subprocess.TimeoutExpired as e:
        partial = e.stderr if isinstance(e.stderr, str) else ""
        raise ToolchainError(f"Linker timed out after {timeout}s", output=partial)

    combined = (result.stdout or "") + (result.stderr or "")
    if result.returncode != 0:
        raise ToolchainError(
            f"Linker failed with exit code {result.returncode}",
            exit_code=result.returncode,
            output=combined.strip(),
        )
    if not output.exists():
        raise ToolchainError("Linker reported success but produced no file", exit_code=0, output=combined)
    return combined
