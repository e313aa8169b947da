"""Inkwell canon layer — patch engine and cascade consistency manager."""

from inkwell.canon.cascade import CascadeManager, CascadeReport
from inkwell.canon.patches import (
    ApplyReport,
    ApplyWarning,
    EmptyPatchError,
    PatchEngine,
    PatchError,
    PatchNotFoundError,
    PatchStateError,
    create_patch,
    patch_from_dict,
)

__all__ = [
    "ApplyReport",
    "ApplyWarning",
    "CascadeManager",
    "CascadeReport",
    "EmptyPatchError",
    "PatchEngine",
    "PatchError",
    "PatchNotFoundError",
    "PatchStateError",
    "create_patch",
    "patch_from_dict",
]
