"""Scenario Configuration (C1): load, decode and resolve scenario parameters.

The configuration is a JSON document mapping scenario names to their
placeholder values, optional outline definition, execution settings,
saved request selections and custom file paths.  Two top-level keys are
reserved: ``version`` and ``global`` (environment-wide plan properties).

Placeholder values come in three shapes, decoded once at load time into a
tagged union so resolution never has to guess:

  - ``LiteralValue``: a number (or numeric string), coerced to ``int``
  - ``SizedVariant``: an object keyed by site size (``{"xs": 1, "s": 10}``)
  - ``AliasPath``: an array of keys pointing at another node of the document

Any other shape is rejected by ``parse_config`` with a ``ConfigError`` naming
the scenario and key.

Pure Python.  No I/O beyond reading the config file.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

from perftoolkit.errors import ConfigError, UnresolvedPlaceholderError

logger = logging.getLogger(__name__)

# ── Constants ──

RESERVED_KEYS = frozenset({"version", "global"})

SITE_SIZE_LABELS = {
    "xs": "Extra small",
    "s": "Small",
    "m": "Medium",
    "l": "Large",
    "xl": "Extra large",
}

_NUMERIC_RE = re.compile(r"^\s*[-+]?(\d+(\.\d*)?|\.\d+)([eE][-+]?\d+)?\s*$")


# ── Exceptions ──


class AmbiguousPlaceholderError(ConfigError):
    """A placeholder used outside its scenario is defined by several scenarios."""

    def __init__(self, scenario: str, placeholder: str, owners: list[str]):
        self.scenario = scenario
        self.placeholder = placeholder
        self.owners = list(owners)
        super().__init__(
            f"Placeholder {placeholder!r} used in feature {scenario!r} is defined "
            f"by more than one scenario ({', '.join(owners)}); define it in "
            f"{scenario!r} to disambiguate"
        )


# ── Site Size ──


class SiteSize(str, Enum):
    """Scale tag selecting which variant of a per-size value applies."""

    XS = "xs"
    S = "s"
    M = "m"
    L = "l"
    XL = "xl"

    @property
    def label(self) -> str:
        return SITE_SIZE_LABELS[self.value]

    @classmethod
    def parse(cls, value: Union[str, "SiteSize", None]) -> "SiteSize":
        """Validate a user-supplied size tag (case-insensitive).

        Raises:
            ConfigError: If the tag is not one of xs, s, m, l, xl.
        """
        if isinstance(value, SiteSize):
            return value
        tag = value.strip().lower() if isinstance(value, str) else ""
        try:
            return cls(tag)
        except ValueError:
            raise ConfigError(
                f"Site size is not valid: {value!r}. It should be either one of: "
                + ", ".join(s.value for s in cls)
            ) from None


# ── Config Values ──


@dataclass(frozen=True)
class LiteralValue:
    """A plain numeric value, identical for every site size."""

    value: Union[int, float]


@dataclass(frozen=True)
class SizedVariant:
    """A value with one variant per site size."""

    values: dict = field(default_factory=dict)

    def has(self, size: SiteSize) -> bool:
        return size.value in self.values

    def get(self, size: SiteSize) -> Any:
        return self.values[size.value]


@dataclass(frozen=True)
class AliasPath:
    """A reference to another node of the configuration document."""

    path: tuple = ()

    def __str__(self) -> str:
        return " > ".join(self.path)


ConfigValue = Union[LiteralValue, SizedVariant, AliasPath]


# ── Data Classes ──


@dataclass
class OutlineSpec:
    """Scenario outline extension: row count plus example-table columns.

    Attributes:
        count: Number of example rows (literal, per-size or alias).  None
            when the config omits it, which fails rendering of the scenario.
        columns: Column header -> cell template.  ``#!count!#`` in a cell
            is replaced with the 1-based row index.
    """

    count: Optional[ConfigValue]
    columns: dict[str, str] = field(default_factory=dict)


@dataclass
class ExecutionSpec:
    """Thread-group execution settings for a scenario."""

    users: ConfigValue
    rampup: ConfigValue


@dataclass
class ScenarioSpec:
    """Decoded configuration of a single scenario.

    Attributes:
        name: Scenario (feature) name, also the feature file stem.
        placeholders: Placeholder name -> decoded value.
        outline: Outline extension, if the scenario is an outline.
        execution: Users/ramp-up for the scenario's thread group.
        requests: Saved request selections keyed by capture label.
        featurepath: Custom feature template path.
        contextpaths: Extra step-definition files for the runner.
        raw: The undecoded JSON object.
    """

    name: str
    placeholders: dict[str, ConfigValue] = field(default_factory=dict)
    outline: Optional[OutlineSpec] = None
    execution: Optional[ExecutionSpec] = None
    requests: dict[str, dict] = field(default_factory=dict)
    featurepath: Optional[str] = None
    contextpaths: list[str] = field(default_factory=list)
    raw: dict = field(default_factory=dict, repr=False)


@dataclass
class ScenarioConfig:
    """The whole configuration document, decoded.

    Immutable by convention for the duration of a run.  Saved request
    selections are written to a separate copy (see ``selector.SelectionStore``).
    """

    version: Any = None
    scenarios: dict[str, ScenarioSpec] = field(default_factory=dict)
    global_properties: dict[str, ConfigValue] = field(default_factory=dict)
    raw: dict = field(default_factory=dict, repr=False)
    source_path: Optional[Path] = None
    ambiguous_placeholders: dict[str, list[str]] = field(default_factory=dict)

    def scenario(self, name: str) -> ScenarioSpec:
        """Return a scenario by name.

        Raises:
            ConfigError: If the scenario is not configured.
        """
        try:
            return self.scenarios[name]
        except KeyError:
            raise ConfigError(f"Scenario not found in config: {name}") from None

    def owners(self, placeholder: str) -> list[str]:
        """Scenarios defining ``placeholder`` in their ``scenario`` map, in document order."""
        return [
            name for name, spec in self.scenarios.items()
            if placeholder in spec.placeholders
        ]


# ── Loading ──


def load_config(path: Union[str, Path]) -> ScenarioConfig:
    """Read and decode a JSON configuration file.

    Raises:
        ConfigError: If the file is missing, not valid JSON, or contains an
            unrecognized value shape.
    """
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}") from None
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Check config file {path}: {exc}") from exc
    return parse_config(raw, source_path=path)


def parse_config(raw: Any, source_path: Optional[Path] = None) -> ScenarioConfig:
    """Decode an already-parsed configuration document."""
    if not isinstance(raw, dict) or not raw:
        raise ConfigError("Check config file: expected a non-empty JSON object")

    config = ScenarioConfig(
        version=raw.get("version"),
        raw=raw,
        source_path=source_path,
    )

    global_section = raw.get("global") or {}
    if not isinstance(global_section, dict):
        raise ConfigError("Config section 'global' must be an object")
    for key, value in global_section.items():
        config.global_properties[key] = decode_value(
            value, f"global > {key}", coerce_int=False,
        )

    for name, entry in raw.items():
        if name in RESERVED_KEYS:
            continue
        config.scenarios[name] = _parse_scenario(name, entry)

    if not config.scenarios:
        raise ConfigError("Check config file: no scenarios configured")

    for name in {p for s in config.scenarios.values() for p in s.placeholders}:
        owners = config.owners(name)
        if len(owners) > 1:
            config.ambiguous_placeholders[name] = owners
    if config.ambiguous_placeholders:
        logger.warning(
            "Placeholders defined by more than one scenario (must be resolved "
            "within their own scenario): %s",
            ", ".join(sorted(config.ambiguous_placeholders)),
        )

    logger.debug(
        "Loaded config version %s with %d scenarios",
        config.version, len(config.scenarios),
    )
    return config


def _parse_scenario(name: str, entry: Any) -> ScenarioSpec:
    if not isinstance(entry, dict):
        raise ConfigError(f"Config for scenario {name!r} must be an object")

    spec = ScenarioSpec(name=name, raw=entry)

    placeholders = entry.get("scenario") or {}
    if not isinstance(placeholders, dict):
        raise ConfigError(f"'scenario' of {name!r} must be an object")
    for key, value in placeholders.items():
        spec.placeholders[key] = decode_value(value, f"{name} > scenario > {key}")

    outline = entry.get("scenario_outline")
    if outline:
        if not isinstance(outline, dict):
            raise ConfigError(f"'scenario_outline' of {name!r} must be an object")
        columns = {}
        for key, cell in outline.items():
            if key == "count":
                continue
            if isinstance(cell, (dict, list)) or cell is None:
                raise ConfigError(
                    f"Outline column {key!r} of {name!r} must be a string or number"
                )
            columns[key] = str(cell)
        spec.outline = OutlineSpec(
            count=(
                decode_value(outline["count"], f"{name} > scenario_outline > count")
                if "count" in outline else None
            ),
            columns=columns,
        )

    execution = entry.get("execution")
    if execution:
        if not isinstance(execution, dict) or "users" not in execution or "rampup" not in execution:
            raise ConfigError(f"'execution' of {name!r} needs 'users' and 'rampup'")
        spec.execution = ExecutionSpec(
            users=decode_value(execution["users"], f"{name} > execution > users"),
            rampup=decode_value(execution["rampup"], f"{name} > execution > rampup"),
        )

    requests = entry.get("requests") or {}
    if not isinstance(requests, dict):
        raise ConfigError(f"'requests' of {name!r} must be an object")
    spec.requests = dict(requests)

    spec.featurepath = entry.get("featurepath") or None
    contextpath = entry.get("contextpath") or []
    spec.contextpaths = [contextpath] if isinstance(contextpath, str) else list(contextpath)
    return spec


def decode_value(raw: Any, where: str, coerce_int: bool = True) -> ConfigValue:
    """Decode one JSON value into the config-value tagged union.

    Args:
        raw: The JSON value.
        where: Human-readable location for error messages.
        coerce_int: Coerce literals to ``int`` (placeholders) or keep the
            numeric type (global plan properties).

    Raises:
        ConfigError: If the value is not a number, size map or key path.
    """
    if isinstance(raw, dict):
        if not raw:
            raise ConfigError(f"Empty size map at {where}")
        invalid = [k for k in raw if k not in SITE_SIZE_LABELS]
        if invalid:
            raise ConfigError(
                f"Invalid size key(s) {', '.join(map(repr, invalid))} at {where}"
            )
        for size, value in raw.items():
            if isinstance(value, (dict, list)) or value is None:
                raise ConfigError(f"Size {size!r} at {where} must be a scalar value")
        return SizedVariant(values=dict(raw))

    if isinstance(raw, list):
        if not raw or not all(isinstance(seg, str) and seg for seg in raw):
            raise ConfigError(f"Alias at {where} must be a non-empty list of keys")
        return AliasPath(path=tuple(raw))

    number = as_number(raw)
    if number is not None:
        return LiteralValue(int(number) if coerce_int else number)

    raise ConfigError(f"Unrecognized value {raw!r} at {where}")


def as_number(raw: Any) -> Optional[Union[int, float]]:
    """Return ``raw`` as a number if it is numeric (numbers or numeric strings)."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return raw
    if isinstance(raw, str) and _NUMERIC_RE.match(raw):
        text = raw.strip()
        if any(c in text for c in ".eE"):
            return float(text)
        return int(text)
    return None


# ── Resolution ──


def resolve(
    config: ScenarioConfig,
    scenario_name: str,
    placeholder_name: str,
    size: Union[str, SiteSize],
) -> Any:
    """Resolve a placeholder of a scenario to its concrete value for ``size``.

    The scenario's own ``scenario`` map is consulted first.  Otherwise the
    placeholder is looked up in every scenario's map; a name defined by more
    than one scenario is refused rather than silently taking the first.

    Raises:
        ConfigError: Invalid size, missing size variant, broken alias, or an
            ambiguous placeholder.
        UnresolvedPlaceholderError: No scenario defines the placeholder.
    """
    size = SiteSize.parse(size)
    spec = config.scenario(scenario_name)

    value = spec.placeholders.get(placeholder_name)
    if value is not None:
        return resolve_value(config, value, size, scenario_name, placeholder_name)

    owners = config.owners(placeholder_name)
    if len(owners) > 1:
        raise AmbiguousPlaceholderError(scenario_name, placeholder_name, owners)
    if owners:
        value = config.scenarios[owners[0]].placeholders[placeholder_name]
        return resolve_value(config, value, size, scenario_name, placeholder_name)

    raise UnresolvedPlaceholderError(scenario_name, placeholder_name)


def resolve_value(
    config: ScenarioConfig,
    value: ConfigValue,
    size: SiteSize,
    scenario_name: str = "",
    key: str = "",
) -> Any:
    """Resolve a decoded config value for ``size``."""
    if isinstance(value, SizedVariant):
        if value.has(size):
            return value.get(size)
        raise ConfigError(
            f"Invalid size passed for feature {scenario_name}, param: {key} "
            f"(no value for size {size.value!r})"
        )
    if isinstance(value, AliasPath):
        return _follow_alias(config, value, size, scenario_name, key, seen=())
    if isinstance(value, LiteralValue):
        return value.value
    raise ConfigError(f"Unrecognized value for feature {scenario_name}, param: {key}")


def lookup_path(config: ScenarioConfig, path: tuple) -> Any:
    """Walk the raw configuration document through ``path``.

    Raises:
        ConfigError: If any segment does not exist.
    """
    node: Any = config.raw
    for depth, segment in enumerate(path):
        if not isinstance(node, dict) or segment not in node:
            walked = " > ".join(path[: depth + 1])
            raise ConfigError(f"Alias path not found in config: {walked}")
        node = node[segment]
    return node


def _follow_alias(
    config: ScenarioConfig,
    alias: AliasPath,
    size: SiteSize,
    scenario_name: str,
    key: str,
    seen: tuple,
) -> Any:
    if alias.path in seen:
        raise ConfigError(
            f"Circular alias for feature {scenario_name}, param: {key}: {alias}"
        )
    seen = seen + (alias.path,)

    node = lookup_path(config, alias.path)
    if isinstance(node, list):
        target = decode_value(node, str(alias))
        return _follow_alias(config, target, size, scenario_name, key, seen)
    if isinstance(node, dict):
        if size.value in node:
            return node[size.value]
        raise ConfigError(
            f"Invalid size passed for feature {scenario_name}, param: {key} "
            f"(alias {alias} has no value for size {size.value!r})"
        )
    number = as_number(node)
    if number is not None:
        return int(number)
    raise ConfigError(
        f"Alias {alias} for feature {scenario_name}, param: {key} "
        f"does not point at a size map or number"
    )
