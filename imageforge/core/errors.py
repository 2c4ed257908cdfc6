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
# ERROR TAXONOMY
# -----------------------------------------------------------------------------
# Every failure names the phase it happened in and the offending input
# (package name, file path) so the caller can retry with corrected inputs.
# All of them abort the build: an image is either fully composed or absent.
# -----------------------------------------------------------------------------


class ImageForgeError(Exception):
    """Base class for image build failures."""

    phase = "build"

    def __init__(self, message: str, subject: str | None = None, phase: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.subject = subject
        if phase is not None:
            self.phase = phase

    def __str__(self) -> str:
        if self.subject:
            return f"[{self.phase}] {self.message} ({self.subject})"
        return f"[{self.phase}] {self.message}"


class ResolutionError(ImageForgeError):
    """Unknown package, unreadable manifest, or dependency cycle."""

    phase = "resolution"


class PrecompileScriptError(ImageForgeError):
    """The precompile script raised. Statements it recorded are discarded."""

    phase = "precompiling"


class PrecompileFileError(ImageForgeError):
    """The precompile statements file could not be read at all."""

    phase = "precompiling"


class SessionError(ImageForgeError):
    """
    Raised when the build session fails.

    `subject` is the package being loaded when the failure happened (if
    any) and `cause` carries the runtime's own error text.
    """

    phase = "session"

    def __init__(
        self,
        message: str,
        subject: str | None = None,
        phase: str | None = None,
        cause: str | None = None,
    ) -> None:
        super().__init__(message, subject=subject, phase=phase)
        self.cause = cause

    @property
    def package(self) -> str | None:
        return self.subject


class BuildTimeoutError(SessionError):
    """Raised when the session exceeds the Dead Man's Switch timeout."""


class LinkError(ImageForgeError):
    """Raised when emitting or linking the image fails."""

    phase = "linking"

    def __init__(
        self, message: str, subject: str | None = None, exit_code: int = -1, output: str = ""
    ) -> None:
        super().__init__(message, subject=subject)
        self.exit_code = exit_code
        self.output = output


class NoBackupError(ImageForgeError):
    """Restore requested but the default image was never replaced."""

    phase = "installing"


class InstallError(ImageForgeError):
    """Raised when the default image slot cannot be updated."""

    phase = "installing"


class ConfigError(ImageForgeError):
    """Raised when the settings file is unreadable or invalid."""

    phase = "configuration"
