"""Scenario Templater (C2): expand ``#!name!#`` placeholders in feature templates.

Rendering happens in three passes:

  1. every placeholder the scenario declares itself is resolved and
     substituted (fast path, direct keys)
  2. any placeholder left in the text is resolved across all scenarios
  3. outline scenarios get an ``Examples:`` table appended, one row per
     outline count

``substitute`` (the literal replacement step of pass 1) is shared with the
test-plan assembler, whose XML fragments use the same placeholder syntax.

Pure Python.  File I/O only in ``generate_features``.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from perftoolkit.config import (
    ScenarioConfig,
    ScenarioSpec,
    SiteSize,
    as_number,
    resolve,
    resolve_value,
)
from perftoolkit.errors import ConfigError, PlanIOError, UnresolvedPlaceholderError

logger = logging.getLogger(__name__)

# ── Constants ──

PLACEHOLDER_RE = re.compile(r"#!([A-Za-z0-9_]+)!#")

COUNT_KEY = "count"

# Gherkin indentation of the Examples block under a Scenario Outline
_EXAMPLES_INDENT = "    "


# ── Exceptions ──


class TemplateNotFoundError(PlanIOError):
    """A feature or fragment template file does not exist."""


# ── Data Classes ──


@dataclass
class FeatureBatchResult:
    """Outcome of rendering every configured scenario.

    Attributes:
        written: Scenario name -> path of the rendered feature file.
        failed: Scenario name -> error message, for scenarios skipped
            because a value could not be resolved.
    """

    written: dict[str, Path] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed


# ── Substitution ──


def placeholder(name: str) -> str:
    """Return the template token for ``name``."""
    return f"#!{name}!#"


def substitute(text: str, replacements: dict) -> str:
    """Replace each ``#!key!#`` in ``text`` with its value, verbatim."""
    for name, value in replacements.items():
        text = text.replace(placeholder(name), str(value))
    return text


def find_placeholders(text: str) -> list[str]:
    """Placeholder names in ``text``, unique, in order of first appearance."""
    seen: dict[str, None] = {}
    for match in PLACEHOLDER_RE.finditer(text):
        seen.setdefault(match.group(1), None)
    return list(seen)


# ── Rendering ──


def render(
    config: ScenarioConfig,
    scenario_name: str,
    size: Union[str, SiteSize],
    raw_text: str,
) -> str:
    """Render a scenario template for a site size.

    Raises:
        ConfigError: Invalid size, broken value, or an outline without
            ``count``.
        UnresolvedPlaceholderError: A placeholder no scenario defines.
    """
    size = SiteSize.parse(size)
    spec = config.scenario(scenario_name)

    own = {
        key: resolve_value(config, value, size, scenario_name, key)
        for key, value in spec.placeholders.items()
    }
    text = substitute(raw_text, own)

    for name in find_placeholders(text):
        if name == COUNT_KEY and spec.outline is not None and not config.owners(name):
            value = outline_row_count(config, spec, size)
        else:
            value = resolve(config, scenario_name, name, size)
        text = text.replace(placeholder(name), str(value))

    if spec.outline is not None:
        count = outline_row_count(config, spec, size)
        if not text.endswith("\n"):
            text += "\n"
        text += examples_table(spec.outline.columns, count)
    return text


def outline_row_count(config: ScenarioConfig, spec: ScenarioSpec, size: SiteSize) -> int:
    """Resolve the number of example rows of an outline scenario."""
    if spec.outline is None or spec.outline.count is None:
        raise ConfigError(f"Reference counter is not set for outline of {spec.name}")
    value = resolve_value(config, spec.outline.count, size, spec.name, COUNT_KEY)
    number = as_number(value)
    if number is None or number < 0:
        raise ConfigError(
            f"Invalid reference count for examples of {spec.name}: {value!r}"
        )
    return int(number)


def examples_table(columns: dict[str, str], count: int) -> str:
    """Build a Gherkin ``Examples:`` table.

    Each cell template has its ``#!count!#`` token replaced by the 1-based
    row index.
    """
    if not columns:
        raise ConfigError("Scenario outline declares no example columns")

    indent = _EXAMPLES_INDENT
    lines = [
        f"{indent}Examples:",
        f"{indent}  | " + " | ".join(columns) + " |",
    ]
    token = placeholder(COUNT_KEY)
    for row in range(1, count + 1):
        cells = [cell.replace(token, str(row)) for cell in columns.values()]
        lines.append(f"{indent}  | " + " | ".join(cells) + " |")
    return "\n".join(lines) + "\n"


# ── Feature Files ──


def template_path(
    spec: ScenarioSpec,
    features_dir: Path,
    config_dir: Optional[Path] = None,
) -> Path:
    """Where the template of a scenario lives.

    A configured ``featurepath`` wins (relative paths are taken from the
    config file's directory); otherwise ``<features_dir>/<name>.feature``.
    """
    if spec.featurepath:
        path = Path(spec.featurepath)
        if not path.is_absolute() and config_dir is not None:
            path = config_dir / path
        return path
    return features_dir / f"{spec.name}.feature"


def read_template(path: Path) -> str:
    """Read a template file.

    Raises:
        TemplateNotFoundError: If the file does not exist.
        PlanIOError: If it cannot be read.
    """
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise TemplateNotFoundError(f"Template not found: {path}") from None
    except OSError as exc:
        raise PlanIOError(f"Could not read template {path}: {exc}") from exc


def generate_features(
    config: ScenarioConfig,
    size: Union[str, SiteSize],
    output_dir: Path,
    features_dir: Optional[Path] = None,
) -> FeatureBatchResult:
    """Render every configured scenario into ``<output_dir>/<name>.feature``.

    A scenario whose values cannot be resolved is logged, recorded in
    ``failed`` and skipped; the remaining scenarios are still generated.
    Missing templates and write failures abort the batch.
    """
    size = SiteSize.parse(size)

    config_dir = config.source_path.parent if config.source_path else None
    if features_dir is None:
        if config_dir is None:
            raise ConfigError("No features directory given and config has no source path")
        features_dir = config_dir / "features"

    result = FeatureBatchResult()
    output_dir = Path(output_dir)
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise PlanIOError(f"Could not create {output_dir}: {exc}") from exc

    for name, spec in config.scenarios.items():
        raw_text = read_template(template_path(spec, Path(features_dir), config_dir))
        try:
            text = render(config, name, size, raw_text)
        except (ConfigError, UnresolvedPlaceholderError) as exc:
            logger.error("Skipping feature %s: %s", name, exc)
            result.failed[name] = str(exc)
            continue

        target = output_dir / f"{name}.feature"
        try:
            target.write_text(text, encoding="utf-8")
        except OSError as exc:
            raise PlanIOError(f"Could not write feature {target}: {exc}") from exc
        result.written[name] = target
        logger.info("Generated feature %s", target)

    return result
