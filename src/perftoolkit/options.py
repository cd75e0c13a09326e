"""Persisted run options shared between the generator and its hook processes.

The generator records what it was started with (proxy address, site size,
site URL); every later ``perftoolkit hook`` invocation runs in a fresh
process and reads them back from the same JSON file.
"""

import json
import logging
from pathlib import Path
from typing import Any, Union

from perftoolkit.errors import ConfigError, PlanIOError

logger = logging.getLogger(__name__)

KNOWN_OPTIONS = ("proxyurl", "proxyport", "size", "siteurl", "generatedsize")


class OptionNotSetError(ConfigError):
    """An option was read before the generator stored it."""

    def __init__(self, option: str):
        self.option = option
        super().__init__(f"Option {option} is not set.")


class OptionStore:
    """Key/value options kept in a single JSON file.

    Every call reads the file; ``set`` rewrites it whole.  One writer at
    a time.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def set(self, option: str, value: Any) -> None:
        if option not in KNOWN_OPTIONS:
            logger.debug("Storing non-standard option %s", option)
        contents = self._read()
        contents[option] = value
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(contents, indent=2) + "\n", encoding="utf-8")
        except OSError as exc:
            raise PlanIOError(
                f"File {self.path.name} can not be created for storing passed user options: {exc}"
            ) from exc

    def get(self, option: str) -> Any:
        """Return a stored option.

        Raises:
            OptionNotSetError: If the option is missing or empty.
        """
        value = self._read().get(option)
        if value is None or value == "":
            raise OptionNotSetError(option)
        return value

    def get_or(self, option: str, default: Any = None) -> Any:
        try:
            return self.get(option)
        except OptionNotSetError:
            return default

    def has(self, option: str) -> bool:
        return self.get_or(option) is not None

    def all(self) -> dict:
        return dict(self._read())

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            contents = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise PlanIOError(f"Could not read options file {self.path}: {exc}") from exc
        if not isinstance(contents, dict):
            raise PlanIOError(f"Options file {self.path} does not hold a JSON object")
        return contents
