# -----------------------------------------------------------------------------
# CORE LAYER
# -----------------------------------------------------------------------------
# The image composition pipeline:
# - PackageResolver: manifest -> ordered package list
# - PrecompileCollector: statements file / script / inference -> statements
# - BuildSession: runtime process that loads and compiles
# - ImageLinker: session -> published image artifact
# - DefaultImageSlot: default image replace/backup/restore
# - ImageForge: orchestrates all of the above
# -----------------------------------------------------------------------------

from .collector import PrecompileCollector, parse_statement
from .config import Settings, load_settings
from .errors import (
    BuildTimeoutError,
    ConfigError,
    ImageForgeError,
    InstallError,
    LinkError,
    NoBackupError,
    PrecompileFileError,
    PrecompileScriptError,
    ResolutionError,
    SessionError,
)
from .forge import ImageForge, create_image, restore_default_image
from .linker import ImageLinker
from .resolver import PackageResolver, resolve
from .session import BuildSession, SessionState
from .slot import DefaultImageSlot

__all__ = [
    "PrecompileCollector", "parse_statement",
    "Settings", "load_settings",
    "BuildTimeoutError", "ConfigError", "ImageForgeError", "InstallError", "LinkError",
    "NoBackupError", "PrecompileFileError", "PrecompileScriptError", "ResolutionError",
    "SessionError",
    "ImageForge", "create_image", "restore_default_image",
    "ImageLinker",
    "PackageResolver", "resolve",
    "BuildSession", "SessionState",
    "DefaultImageSlot",
]
