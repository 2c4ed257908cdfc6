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
# DOMAIN MODELS - IMAGE BUILD INPUTS AND OUTPUTS
# -----------------------------------------------------------------------------
# These Pydantic models describe what goes into an image build (packages,
# precompile statements, options) and what comes out of it (the artifact).
# The Resolver and Collector produce them; the Session Host and Linker
# consume them without re-validating.
# -----------------------------------------------------------------------------

from pathlib import Path

from pydantic import BaseModel, Field, model_validator


class PackageId(BaseModel):
    """
    A package pinned by the project's manifest.

    `identity` is the content identity used to tell two builds apart:
    the tree hash when the manifest records one, otherwise the version,
    the source path, or "stdlib" for packages shipped with the runtime.
    """

    name: str = Field(..., min_length=1, description="Package name as declared in the manifest")
    uuid: str = Field(..., min_length=1, description="Package UUID from the manifest")
    version: str | None = Field(default=None, description="Locked version, absent for stdlibs")
    tree_hash: str | None = Field(default=None, description="Content hash of the package tree")
    path: str | None = Field(default=None, description="Source directory for path-tracked packages")
    deps: tuple[str, ...] = Field(default=(), description="Names of direct dependencies")

    class Config:
        frozen = True

    @property
    def identity(self) -> str:
        return self.tree_hash or self.version or self.path or "stdlib"

    def __str__(self) -> str:
        if self.version:
            return f"{self.name} v{self.version}"
        return self.name


class PrecompileStatement(BaseModel):
    """
    A (callable, argument types) pair whose specialization must be compiled.

    Statements are hashable so a set collapses duplicates from several
    sources. `to_line()` renders the runtime's trace format:

        precompile(Tuple{typeof(Example.hello), String})
    """

    callable: str = Field(..., min_length=1, description="Dotted callable reference")
    arg_types: tuple[str, ...] = Field(default=(), description="Concrete argument type descriptors")

    class Config:
        frozen = True

    def to_line(self) -> str:
        head = f"typeof({self.callable})"
        return "precompile(Tuple{" + ", ".join((head, *self.arg_types)) + "})"

    def __str__(self) -> str:
        return f"{self.callable}({', '.join(self.arg_types)})"


class PrecompileSources(BaseModel):
    """Where precompile statements come from. Any combination may be empty."""

    script: Path | None = None
    statements_file: Path | None = None
    infer: bool = False

    def is_empty(self) -> bool:
        return self.script is None and self.statements_file is None and not self.infer


class ImageOptions(BaseModel):
    """
    Options for a single image build.

    Exactly one destination is required: an explicit `output_path`, or
    `replace_default` to install the result as the default image.
    """

    project: Path | None = Field(default=None, description="Project directory (default: active project)")
    output_path: Path | None = Field(default=None, description="Where to write the image artifact")
    replace_default: bool = Field(default=False, description="Install the result as the default image")
    incremental: bool = Field(default=True, description="Layer the build on top of a base image")
    base_image: Path | None = Field(default=None, description="Explicit base image for incremental builds")
    precompile_script: Path | None = None
    precompile_statements_file: Path | None = None
    infer_statements: bool = False
    include_transitive_dependencies: bool = True
    cpu_target: str | None = None
    runtime_args: list[str] = Field(default_factory=list)
    default_image: Path | None = Field(default=None, description="Default image slot override")

    @model_validator(mode="after")
    def _check_destination(self) -> "ImageOptions":
        if self.output_path is not None and self.replace_default:
            raise ValueError("output_path and replace_default are mutually exclusive")
        if self.output_path is None and not self.replace_default:
            raise ValueError("either output_path or replace_default must be given")
        if self.base_image is not None and not self.incremental:
            raise ValueError("base_image only applies to incremental builds")
        return self

    def sources(self) -> PrecompileSources:
        return PrecompileSources(
            script=self.precompile_script,
            statements_file=self.precompile_statements_file,
            infer=self.infer_statements,
        )


class ImageArtifact(BaseModel):
    """
    A published image: the loadable image file plus an optional companion
    data file sharing its stem.
    """

    image_path: Path
    data_path: Path | None = None
    packages: list[str] = Field(default_factory=list)
    incremental: bool = True
    base_image: Path | None = None
    cpu_target: str | None = None

    def files(self) -> list[Path]:
        """All files making up the artifact, companion data first."""
        paths = [self.data_path] if self.data_path is not None else []
        return [*paths, self.image_path]


class ProjectDescriptor(BaseModel):
    """
    A project directory: Project.toml (declared dependencies) next to
    Manifest.toml (locked versions). Read-only to the forge.
    """

    root: Path

    class Config:
        frozen = True

    @property
    def project_file(self) -> Path:
        return self.root / "Project.toml"

    @property
    def manifest_file(self) -> Path:
        return self.root / "Manifest.toml"
