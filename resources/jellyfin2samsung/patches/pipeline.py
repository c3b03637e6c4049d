"""
Patch pipeline for Jellyfin2Samsung.

Runs the package transformations in their fixed order over one extracted
workspace. Every step is idempotent: running the pipeline twice over the same
tree leaves it byte-identical after the first run.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set, Union

from ..config.settings import JellyfinConfig
from ..services.file_service import PackageWorkspace
from ..services.jellyfin_service import JellyfinApiClient
from .auto_login import inject_auto_login
from .context import PatchContext
from .custom_css import inject_custom_css
from .diagnostics import inject_dev_logs
from .index import patch_index
from .manifest import patch_manifest
from .playback import apply_playback_shim
from .plugins import PluginPatcher
from .server_config import update_server_config


class PatchStep(Enum):
    """Pipeline steps, declared in execution order."""
    INDEX = "index"
    PLAYBACK_SHIM = "playback_shim"
    SERVER_CONFIG = "server_config"
    AUTO_LOGIN = "auto_login"
    DEV_LOGS = "dev_logs"
    CUSTOM_CSS = "custom_css"
    MANIFEST = "manifest"


class StepStatus(Enum):
    """Outcome of one step."""
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    DISABLED = "disabled"
    FAILED = "failed"


@dataclass
class PatchReport:
    """What each step did during one pipeline run."""
    statuses: Dict[PatchStep, StepStatus] = field(default_factory=dict)
    errors: Dict[PatchStep, str] = field(default_factory=dict)

    @property
    def applied(self) -> List[PatchStep]:
        return [step for step, status in self.statuses.items() if status == StepStatus.APPLIED]

    @property
    def failed(self) -> List[PatchStep]:
        return [step for step, status in self.statuses.items() if status == StepStatus.FAILED]


def default_steps(settings: JellyfinConfig) -> Set[PatchStep]:
    """Steps enabled by the given settings."""
    steps = {PatchStep.INDEX, PatchStep.SERVER_CONFIG, PatchStep.AUTO_LOGIN}
    if settings.patch_playback:
        steps.update((PatchStep.PLAYBACK_SHIM, PatchStep.MANIFEST))
    if settings.enable_dev_logs:
        steps.add(PatchStep.DEV_LOGS)
    if settings.custom_css:
        steps.add(PatchStep.CUSTOM_CSS)
    return steps


class PatchPipeline:
    """
    Applies the enabled steps to a workspace.

    A failing step is logged and recorded in the report; the remaining steps
    still run.
    """

    def __init__(self, plugin_patcher: Optional[PluginPatcher] = None):
        self.plugin_patcher = plugin_patcher or PluginPatcher()
        self._logger = logging.getLogger(__name__)
        self._handlers: Dict[PatchStep, Callable[[PatchContext], bool]] = {
            PatchStep.INDEX: lambda context: patch_index(context, self.plugin_patcher),
            PatchStep.PLAYBACK_SHIM: apply_playback_shim,
            PatchStep.SERVER_CONFIG: update_server_config,
            PatchStep.AUTO_LOGIN: inject_auto_login,
            PatchStep.DEV_LOGS: inject_dev_logs,
            PatchStep.CUSTOM_CSS: inject_custom_css,
            PatchStep.MANIFEST: patch_manifest,
        }

    def apply(self, workspace: PackageWorkspace, context: PatchContext,
              enabled_steps: Optional[Iterable[PatchStep]] = None) -> PatchReport:
        """
        Run the pipeline.

        Args:
            workspace: Extracted package to transform
            context: Patch context bound to the same workspace
            enabled_steps: Steps to run (default: derived from the context settings)

        Returns:
            PatchReport with one status per step
        """
        if context.workspace is not workspace:
            raise ValueError("Patch context belongs to a different workspace")

        enabled = set(enabled_steps) if enabled_steps is not None else default_steps(context.settings)
        report = PatchReport()

        for step in PatchStep:
            if step not in enabled:
                report.statuses[step] = StepStatus.DISABLED
                continue

            self._logger.debug(f"Running patch step: {step.value}")
            try:
                changed = self._handlers[step](context)
            except Exception as e:
                self._logger.error(f"Patch step {step.value} failed: {e}", exc_info=True)
                report.statuses[step] = StepStatus.FAILED
                report.errors[step] = str(e)
                continue

            report.statuses[step] = StepStatus.APPLIED if changed else StepStatus.UNCHANGED

        self._logger.info(
            f"Patch pipeline finished: {len(report.applied)} applied, {len(report.failed)} failed"
        )
        return report


def patch_package(archive_path: Union[str, Path], settings: JellyfinConfig,
                  api: Optional[JellyfinApiClient] = None,
                  enabled_steps: Optional[Iterable[PatchStep]] = None,
                  temp_parent: Optional[Union[str, Path]] = None) -> PatchReport:
    """
    Extract, patch and repack a package archive in place.

    Raises:
        ArchiveError: If the archive cannot be read or written back
    """
    with PackageWorkspace.extract(archive_path, temp_parent=temp_parent) as workspace:
        context = PatchContext(workspace=workspace, settings=settings,
                               api=api or JellyfinApiClient())
        report = PatchPipeline().apply(workspace, context, enabled_steps)
        workspace.repack()
    return report
