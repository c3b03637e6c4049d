"""
Package patch steps for Jellyfin2Samsung.
"""

from .context import PatchContext
from .pipeline import PatchPipeline, PatchReport, PatchStep, StepStatus, default_steps, patch_package
from .plugins import PluginPatcher

__all__ = [
    'PatchContext',
    'PatchPipeline',
    'PatchReport',
    'PatchStep',
    'StepStatus',
    'PluginPatcher',
    'default_steps',
    'patch_package',
]
