"""Glue for the external behavioral test runner (Behat).

Writes the runner's YAML config for the generated features and runs it,
relaying its output as it arrives.
"""

import logging
import shlex
import subprocess
import sys
import threading
from pathlib import Path
from typing import Iterable, Optional, TextIO, Union

import yaml

from perftoolkit.errors import PlanIOError, ProcessError

logger = logging.getLogger(__name__)

# ── Constants ──

RUNNER_EXECUTABLE = "vendor/bin/behat"

DEFAULT_WD_HOST = "http://localhost:4444/wd/hub"

MINK_EXTENSION = "Behat\\MinkExtension\\Extension"
MOODLE_EXTENSION = "Moodle\\BehatExtension\\Extension"

FORMATTERS = {
    "moodle_progress": "Moodle\\BehatExtension\\Formatter\\MoodleProgressFormatter",
    "moodle_list": "Moodle\\BehatExtension\\Formatter\\MoodleListFormatter",
    "moodle_step_count": "Moodle\\BehatExtension\\Formatter\\MoodleStepCountFormatter",
}


# ── Config ──


def runner_config(
    features: Iterable[Union[str, Path]],
    contexts: Iterable[Union[str, Path]],
    base_url: str,
    proxy: Optional[str] = None,
    wd_host: str = DEFAULT_WD_HOST,
) -> dict:
    """Build the runner config document.

    Step-definition contexts are keyed by their file stem, which is the
    context class name by convention.
    """
    moodle = {
        "formatters": dict(FORMATTERS),
        "features": [str(f) for f in features],
        "steps_definitions": {Path(c).stem: str(c) for c in contexts},
    }
    if proxy:
        moodle["capabilities"] = {
            "proxy": {"httpProxy": proxy, "proxyType": "manual"},
        }

    return {
        "default": {
            "context": {"class": "behat_init_context"},
            "extensions": {
                MINK_EXTENSION: {
                    "base_url": base_url,
                    "goutte": None,
                    "selenium2": {"wd_host": wd_host},
                },
                MOODLE_EXTENSION: moodle,
            },
            "formatter": {"name": "moodle_progress"},
        },
    }


def write_runner_config(
    path: Union[str, Path],
    features: Iterable[Union[str, Path]],
    contexts: Iterable[Union[str, Path]],
    base_url: str,
    proxy: Optional[str] = None,
) -> Path:
    path = Path(path)
    document = runner_config(features, contexts, base_url, proxy)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            yaml.safe_dump(document, default_flow_style=False, sort_keys=False),
            encoding="utf-8",
        )
    except OSError as exc:
        raise PlanIOError(f"File {path} can not be created: {exc}") from exc
    logger.debug("Wrote runner config %s", path)
    return path


# ── Execution ──


def runner_command(config_file: Union[str, Path], executable: str = RUNNER_EXECUTABLE) -> list[str]:
    return [executable, "--config", str(config_file)]


def format_command(command: list[str]) -> str:
    return shlex.join(command)


def run_runner(
    command: list[str],
    cwd: Optional[Union[str, Path]] = None,
    output: Optional[TextIO] = None,
) -> int:
    """Run the runner to completion, streaming its stdout to ``output``.

    No timeout: a scenario run can take as long as it needs.  The process
    is never killed either; ``Popen`` only returns once the executable is
    running, and a launch that fails raises there.

    stderr is drained on a separate thread while stdout is relayed, so a
    runner writing a lot of notices cannot fill its pipe and stall.

    Returns:
        The exit code (always 0; failures raise).

    Raises:
        ProcessError: The runner could not be started or exited non-zero.
    """
    output = output or sys.stdout
    logger.info("Running: %s", format_command(command))
    try:
        process = subprocess.Popen(
            command,
            cwd=str(cwd) if cwd else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            bufsize=1,
        )
    except OSError as exc:
        raise ProcessError(f"Error starting process {command[0]}: {exc}") from exc

    stderr_chunks: list[str] = []
    stderr_reader = threading.Thread(
        target=_drain, args=(process.stderr, stderr_chunks), daemon=True,
    )
    stderr_reader.start()

    for line in process.stdout:
        if line.strip():
            output.write(line)
            output.flush()

    stderr_reader.join()
    returncode = process.wait()
    stderr = "".join(stderr_chunks)
    if returncode != 0:
        if stderr:
            output.write(stderr)
            output.flush()
        raise ProcessError(
            f"Runner exited with code {returncode}",
            returncode=returncode,
            stderr=stderr,
        )
    return returncode


def _drain(stream: Optional[TextIO], chunks: list[str]) -> None:
    if stream is not None:
        chunks.append(stream.read())
