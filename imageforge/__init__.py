# -----------------------------------------------------------------------------
# IMAGEFORGE
# -----------------------------------------------------------------------------
# Builds loadable runtime images (packages + precompiled specializations)
# and manages the installation's default image slot.
# -----------------------------------------------------------------------------

from .core import (
    ImageForge,
    ImageForgeError,
    NoBackupError,
    create_image,
    restore_default_image,
)
from .domain import ImageArtifact, ImageOptions

__version__ = "0.1.0"

__all__ = [
    "ImageForge",
    "ImageForgeError",
    "NoBackupError",
    "create_image",
    "restore_default_image",
    "ImageArtifact",
    "ImageOptions",
]
