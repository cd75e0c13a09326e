"""Workspace layout under the data root.

::

    <data_root>/testplangenerator/          tool_dir: features, behat.yml, options
    <data_root>/testplangenerator/har/      raw captures, one per label
    <data_root>/testplangenerator/testplan/ final plan, updated config, tool info
"""

import logging
import os
import re
import shutil
from pathlib import Path
from typing import Mapping, Optional, Union

from perftoolkit.errors import ConfigError, PlanIOError

logger = logging.getLogger(__name__)

# ── Constants ──

DATAROOT_ENV = "PERFTOOLKIT_DATAROOT"

TOOL_DIRNAME = "testplangenerator"
HAR_DIRNAME = "har"
FINAL_PLAN_DIRNAME = "testplan"

PLAN_FILENAME = "testplan.jmx"
OPTIONS_FILENAME = "testplanoptions.json"
RUNNER_CONFIG_FILENAME = "behat.yml"
UPDATED_CONFIG_FILENAME = "testplan.json"
TOOL_INFO_FILENAME = "toolinfo.json"

_GIT_HASH_RE = re.compile(r"^[0-9a-f]{40}$")


class Workspace:
    """Paths of one generation run.  Nothing is created until written."""

    def __init__(self, data_root: Union[str, Path]):
        self.data_root = Path(data_root)

    @property
    def tool_dir(self) -> Path:
        return self.data_root / TOOL_DIRNAME

    @property
    def har_dir(self) -> Path:
        return self.tool_dir / HAR_DIRNAME

    @property
    def final_plan_dir(self) -> Path:
        return self.tool_dir / FINAL_PLAN_DIRNAME

    @property
    def plan_file(self) -> Path:
        return self.final_plan_dir / PLAN_FILENAME

    @property
    def options_file(self) -> Path:
        return self.tool_dir / OPTIONS_FILENAME

    @property
    def runner_config_file(self) -> Path:
        return self.tool_dir / RUNNER_CONFIG_FILENAME

    @property
    def updated_config_file(self) -> Path:
        return self.final_plan_dir / UPDATED_CONFIG_FILENAME

    @property
    def tool_info_file(self) -> Path:
        return self.final_plan_dir / TOOL_INFO_FILENAME

    def har_file(self, label: str) -> Path:
        return self.har_dir / (label.replace(" ", "_") + ".har")

    def feature_file(self, name: str) -> Path:
        return self.tool_dir / f"{name}.feature"

    def reset(self) -> None:
        """Drop everything a previous run left behind."""
        _drop_dir(self.tool_dir)
        try:
            self.tool_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PlanIOError(f"Could not create {self.tool_dir}: {exc}") from exc
        logger.debug("Reset workspace %s", self.tool_dir)

    def clean_har_dir(self) -> None:
        _drop_dir(self.har_dir)


def data_root_from_env(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Read the data root from ``PERFTOOLKIT_DATAROOT``.

    Raises:
        ConfigError: If the variable is unset or empty.
    """
    environ = os.environ if environ is None else environ
    value = environ.get(DATAROOT_ENV, "").strip()
    if not value:
        raise ConfigError(f"{DATAROOT_ENV} is not set.")
    return Path(value)


def tool_git_hash(repo_dir: Union[str, Path]) -> Optional[str]:
    """Commit hash checked out in ``repo_dir``, or None if it cannot be told.

    Handles a detached HEAD and a ``ref:`` indirection to a loose ref.
    Packed refs are not looked up.
    """
    git_dir = Path(repo_dir) / ".git"
    try:
        head = (git_dir / "HEAD").read_text(encoding="utf-8").strip()
    except OSError:
        return None

    if _GIT_HASH_RE.match(head):
        return head
    if not head.startswith("ref: "):
        return None

    try:
        ref_hash = (git_dir / head[5:].strip()).read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return ref_hash if _GIT_HASH_RE.match(ref_hash) else None


def _drop_dir(path: Path) -> None:
    if not path.exists():
        return
    try:
        shutil.rmtree(path)
    except OSError as exc:
        raise PlanIOError(f"Could not remove {path}: {exc}") from exc
