"""Error taxonomy shared by every perftoolkit component.

Resolution failures (``ConfigError``, ``UnresolvedPlaceholderError``) abort
the single scenario or feature being processed.  I/O and process failures
(``PlanIOError``, ``ProcessError``) abort the whole run.  Nothing is retried.
"""


class ToolkitError(Exception):
    """Base exception for all perftoolkit errors."""


class ConfigError(ToolkitError):
    """Missing or invalid configuration key, or invalid site size."""


class UnresolvedPlaceholderError(ToolkitError):
    """A template references a value that is undefined or unreachable.

    Attributes:
        scenario: Scenario whose template was being rendered.
        placeholder: The placeholder name that could not be resolved.
    """

    def __init__(self, scenario: str, placeholder: str):
        self.scenario = scenario
        self.placeholder = placeholder
        super().__init__(
            f"Replacement value not found: {placeholder} in feature: {scenario}"
        )


class CaptureMismatchError(ToolkitError):
    """Captured traffic cannot be matched to a request for a capture label."""


class PlanIOError(ToolkitError):
    """A template, fragment or plan file is missing, unreadable or unwritable."""


class ProcessError(ToolkitError):
    """The external test runner failed to start or exited non-zero.

    Attributes:
        returncode: Exit code of the runner, or None if it never started.
        stderr: Captured error output of the runner.
    """

    def __init__(self, message: str, returncode=None, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)
