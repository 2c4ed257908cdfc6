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
# SETTINGS - TOOLCHAIN CONFIGURATION
# -----------------------------------------------------------------------------
# Responsibility: Tell the forge which runtime to launch, which linker to
# call and where the default image slot lives. Loaded from imageforge.yaml
# at startup, then overridden by environment variables (.env supported).
#
# Environment Variables:
# - IMAGEFORGE_CONFIG: settings file path (default: ./imageforge.yaml)
# - IMAGEFORGE_PROJECT: active project directory (default: cwd)
# - IMAGEFORGE_DEFAULT_IMAGE: default image slot path
# - IMAGEFORGE_RUNTIME: runtime command line (shell syntax)
# - IMAGEFORGE_LINKER: linker command line (shell syntax)
# - IMAGEFORGE_BUILD_LOG_DIR: where build journals are written
# -----------------------------------------------------------------------------

import os
import platform
import shlex
from pathlib import Path
from typing import List

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError
from rich.console import Console

from imageforge.core.errors import ConfigError

console = Console()

CONFIG_FILENAME = "imageforge.yaml"


def image_extension() -> str:
    """Extension of loadable images on this platform."""
    system = platform.system()
    if system == "Darwin":
        return "dylib"
    if system == "Windows":
        return "dll"
    return "so"


def default_image_path() -> Path:
    return Path.home() / ".imageforge" / "images" / f"default.{image_extension()}"


def active_project() -> Path:
    """The project used when the caller does not name one."""
    return Path(os.getenv("IMAGEFORGE_PROJECT") or Path.cwd())


class Settings(BaseModel):
    """
    Pydantic model for the toolchain configuration.

    The runtime command must start a process that speaks the session
    protocol on stdin/stdout; `image_flag` is how that runtime is told to
    start from an existing image.
    """

    runtime_command: List[str] = Field(default_factory=lambda: ["forge-runtime"], min_length=1)
    image_flag: str = "--image"
    linker_command: List[str] = Field(default_factory=lambda: ["cc", "-shared"], min_length=1)
    link_args: List[str] = Field(default_factory=list)
    default_image: Path = Field(default_factory=default_image_path)
    session_timeout_seconds: float = Field(default=1800, gt=0)
    link_timeout_seconds: float = Field(default=600, gt=0)
    shutdown_grace_seconds: float = Field(default=10, ge=0)
    build_log_dir: Path | None = None
    keep_object: bool = False


def _env_overrides() -> dict:
    overrides: dict = {}
    if os.getenv("IMAGEFORGE_RUNTIME"):
        overrides["runtime_command"] = shlex.split(os.environ["IMAGEFORGE_RUNTIME"])
    if os.getenv("IMAGEFORGE_LINKER"):
        overrides["linker_command"] = shlex.split(os.environ["IMAGEFORGE_LINKER"])
    if os.getenv("IMAGEFORGE_DEFAULT_IMAGE"):
        overrides["default_image"] = os.environ["IMAGEFORGE_DEFAULT_IMAGE"]
    if os.getenv("IMAGEFORGE_BUILD_LOG_DIR"):
        overrides["build_log_dir"] = os.environ["IMAGEFORGE_BUILD_LOG_DIR"]
    return overrides


def load_settings(config_path: Path | None = None) -> Settings:
    """
    Load settings from YAML, then apply environment overrides.

    Args:
        config_path: Explicit settings file. When given it must exist.

    Returns:
        Validated Settings.

    Raises:
        ConfigError: If the file is unreadable or fails validation.
    """
    load_dotenv(Path.cwd() / ".env")

    explicit = config_path is not None or bool(os.getenv("IMAGEFORGE_CONFIG"))
    path = Path(config_path or os.getenv("IMAGEFORGE_CONFIG") or CONFIG_FILENAME)

    data: dict = {}
    if path.exists():
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read settings: {e}", subject=str(path))
        if not isinstance(data, dict):
            raise ConfigError("Settings file must contain a mapping", subject=str(path))
        console.print(f"[dim][CONFIG] Settings loaded: {path}[/dim]")
    elif explicit:
        raise ConfigError("Settings file not found", subject=str(path))

    data.update(_env_overrides())

    try:
        return Settings(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings: {e}", subject=str(path))
