# -----------------------------------------------------------------------------
# INFRASTRUCTURE LAYER
# -----------------------------------------------------------------------------
# Contains low-level infrastructure wrappers:
# - RuntimeProcess: runtime subprocess speaking the session protocol
# - run_linker: external linker invocation
# - atomic_copy/publish/staging_dir: stage-then-rename file publishing
# -----------------------------------------------------------------------------

from .atomic import atomic_copy, publish, staging_dir
from .runtime_client import RuntimeProcess, RuntimeProcessError, RuntimeRequestError
from .toolchain import ToolchainError, run_linker

__all__ = [
    "atomic_copy",
    "publish",
    "staging_dir",
    "RuntimeProcess",
    "RuntimeProcessError",
    "RuntimeRequestError",
    "ToolchainError",
    "run_linker",
]
