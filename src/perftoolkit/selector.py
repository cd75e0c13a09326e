"""Capture Request Selector (C3): pick the captured request behind a capture label.

A capture usually records several page requests (redirects, frames, the
actual form post).  The selector decides which one the plan should replay:

  - With a saved selection for (feature, label), the fresh candidate with the
    same method and path is used.  Query values in the saved selection that
    are global references (``${name}``) override the fresh literals, so
    cross-scenario variables survive a re-capture.
  - Without one, a single candidate is taken as-is; several candidates are
    handed to a ``Prompter``.  The prompter may also turn query values into
    global references.

The final choice is persisted by a ``SelectionStore`` so reruns are
deterministic.

Pure Python.  No network access.
"""

import copy
import json
import logging
import re
from pathlib import Path
from typing import Optional, Protocol

from perftoolkit.config import ScenarioConfig
from perftoolkit.errors import CaptureMismatchError, PlanIOError
from perftoolkit.har import CapturedRequest

logger = logging.getLogger(__name__)

# ── Constants ──

GLOBAL_REFERENCE_RE = re.compile(r"\$\{[^{}]+\}")


# ── Exceptions ──


class CaptureSelectionError(CaptureMismatchError):
    """Several requests were captured and nobody can choose between them."""


# ── Helpers ──


def global_reference(name: str) -> str:
    """Wrap ``name`` as a global reference token."""
    return "${" + name + "}"


def is_global_reference(value) -> bool:
    return isinstance(value, str) and bool(GLOBAL_REFERENCE_RE.search(value))


# ── I/O Protocols ──


class UserIO(Protocol):
    """Protocol for user input/output, injectable for testing."""

    def display(self, message: str) -> None:
        """Show a message to the user."""
        ...

    def prompt(self, message: str) -> str:
        """Prompt the user for input and return their response."""
        ...


class TerminalIO:
    """Default terminal-based I/O using print/input."""

    def display(self, message: str) -> None:
        print(message)

    def prompt(self, message: str) -> str:
        print(message)
        return input("> ").strip()


class Prompter(Protocol):
    """Disambiguation capability used when a capture is ambiguous."""

    def choose_request(self, label: str, candidates: list[CapturedRequest]) -> int:
        """Return the 0-based index of the candidate to use."""
        ...

    def substitutions(self, label: str, request: CapturedRequest) -> dict[str, str]:
        """Return query param name -> global reference name to substitute."""
        ...


class TerminalPrompter:
    """Asks the operator, re-prompting until the answer is valid."""

    def __init__(self, io: Optional[UserIO] = None):
        self.io = io or TerminalIO()

    def choose_request(self, label: str, candidates: list[CapturedRequest]) -> int:
        count = len(candidates)
        self.io.display(f"Found {count} requests for capture '{label}':")
        for index, candidate in enumerate(candidates, 1):
            self.io.display(f"  {index}. {candidate.method} {candidate.path}")

        while True:
            answer = self.io.prompt(f"Which request should be used for '{label}'? [1-{count}]")
            try:
                choice = int(answer)
            except (TypeError, ValueError):
                self.io.display("Please enter the number of the request.")
                continue
            if 1 <= choice <= count:
                return choice - 1
            self.io.display(f"Please enter a number between 1 and {count}.")

    def substitutions(self, label: str, request: CapturedRequest) -> dict[str, str]:
        result: dict[str, str] = {}
        for name, value in request.query.items():
            if is_global_reference(value):
                continue
            answer = self.io.prompt(
                f"[{label}] {name}={value}: enter a global reference name "
                f"to use instead, or leave empty to keep the value"
            )
            answer = (answer or "").strip()
            if answer:
                result[name] = answer
        return result


class NonInteractivePrompter:
    """Refuses to guess: ambiguous captures fail, literals are kept."""

    def choose_request(self, label: str, candidates: list[CapturedRequest]) -> int:
        listing = ", ".join(f"{c.method} {c.path}" for c in candidates)
        raise CaptureSelectionError(
            f"Found {len(candidates)} requests for capture '{label}' ({listing}) "
            f"and no saved selection. Rerun interactively to choose one."
        )

    def substitutions(self, label: str, request: CapturedRequest) -> dict[str, str]:
        return {}


# ── Selection Store ──


class SelectionStore:
    """Persists confirmed selections into an updated copy of the config.

    Selections live under ``<feature>.requests.<label>``, exactly where the
    config loader reads them, so the updated copy can be shipped as the next
    run's config.  Reads fall back to the original config until the copy
    exists.  Whole-file read-modify-write; single writer only.
    """

    def __init__(self, config: ScenarioConfig, path: Path):
        self.config = config
        self.path = Path(path)

    def load(self, feature: str, label: str) -> Optional[CapturedRequest]:
        scenario = self._read().get(feature)
        if not isinstance(scenario, dict):
            return None
        entry = (scenario.get("requests") or {}).get(label)
        if not entry:
            return None
        return CapturedRequest.from_dict(entry)

    def save(self, feature: str, label: str, request: CapturedRequest) -> None:
        data = self._read()
        scenario = data.setdefault(feature, {})
        scenario.setdefault("requests", {})[label] = request.as_dict()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
        except OSError as exc:
            raise PlanIOError(f"Could not save request selection to {self.path}: {exc}") from exc
        logger.debug("Saved selection %s/%s: %s %s", feature, label, request.method, request.path)

    def _read(self) -> dict:
        if not self.path.exists():
            return copy.deepcopy(self.config.raw)
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise PlanIOError(f"Could not read saved selections {self.path}: {exc}") from exc


# ── Selector ──


class CaptureRequestSelector:
    """Chooses one captured request per capture label.

    Usage::

        selector = CaptureRequestSelector(TerminalPrompter(), store)
        request = selector.select_for("view_course", "viewcourse", candidates)
    """

    def __init__(self, prompter: Optional[Prompter] = None, store: Optional[SelectionStore] = None):
        self.prompter = prompter or NonInteractivePrompter()
        self.store = store

    def select(
        self,
        label: str,
        candidates: list[CapturedRequest],
        saved: Optional[CapturedRequest] = None,
    ) -> CapturedRequest:
        """Pick the request for ``label``.  Does not persist anything.

        Raises:
            CaptureMismatchError: The saved selection matches no candidate,
                or nothing was captured.
            CaptureSelectionError: Several candidates and the prompter
                cannot choose.
        """
        if saved is not None:
            return self._rematch(label, candidates, saved)

        if not candidates:
            raise CaptureMismatchError(f"No page requests captured for '{label}'")

        if len(candidates) == 1:
            chosen = candidates[0]
        else:
            index = self.prompter.choose_request(label, candidates)
            if not 0 <= index < len(candidates):
                raise CaptureMismatchError(
                    f"Invalid request index {index} for capture '{label}'"
                )
            chosen = candidates[index]

        query = dict(chosen.query)
        for name, reference in self.prompter.substitutions(label, chosen).items():
            if reference:
                query[name] = global_reference(reference)
        return CapturedRequest(path=chosen.path, method=chosen.method, query=query)

    def select_for(
        self,
        feature: str,
        label: str,
        candidates: list[CapturedRequest],
        save: bool = True,
    ) -> CapturedRequest:
        """Select using the stored selection for (feature, label).

        With ``save=False`` the caller stores the result itself through
        ``remember`` once it has been used.
        """
        saved = self.store.load(feature, label) if self.store else None
        request = self.select(label, candidates, saved)
        if save:
            self.remember(feature, label, request)
        logger.info("Capture %s/%s -> %s %s", feature, label, request.method, request.path)
        return request

    def remember(self, feature: str, label: str, request: CapturedRequest) -> None:
        if self.store:
            self.store.save(feature, label, request)

    def _rematch(
        self,
        label: str,
        candidates: list[CapturedRequest],
        saved: CapturedRequest,
    ) -> CapturedRequest:
        for candidate in candidates:
            if candidate.method == saved.method and candidate.path == saved.path:
                query = dict(candidate.query)
                for name, value in saved.query.items():
                    if is_global_reference(value):
                        query[name] = value
                return CapturedRequest(path=candidate.path, method=candidate.method, query=query)

        raise CaptureMismatchError(
            f"Saved request {saved.method} {saved.path} for capture '{label}' "
            f"was not found in the captured traffic; the capture and the saved "
            f"selection have drifted apart"
        )
