# -----------------------------------------------------------------------------
# DOMAIN LAYER
# -----------------------------------------------------------------------------
# Contains the Pydantic models that define the contract between the
# Resolver/Collector (inputs) and the Session Host/Linker (outputs).
# -----------------------------------------------------------------------------

from .models import (
    ImageArtifact,
    ImageOptions,
    PackageId,
    PrecompileSources,
    PrecompileStatement,
    ProjectDescriptor,
)

__all__ = [
    "ImageArtifact",
    "ImageOptions",
    "PackageId",
    "PrecompileSources",
    "PrecompileStatement",
    "ProjectDescriptor",
]
