"""Tests for the test runner glue."""

import io
import subprocess
import sys
import threading
from unittest.mock import MagicMock, patch

import pytest
import yaml

from perftoolkit.errors import ProcessError
from perftoolkit.runner import (
    MINK_EXTENSION,
    MOODLE_EXTENSION,
    format_command,
    run_runner,
    runner_command,
    write_runner_config,
)


def _process(stdout_lines, returncode=0, stderr=""):
    process = MagicMock()
    process.stdout = iter(stdout_lines)
    process.stderr = io.StringIO(stderr)
    process.wait.return_value = returncode
    return process


class TestRunnerConfig:
    def test_layout(self, tmp_path):
        path = write_runner_config(
            tmp_path / "behat.yml",
            features=[tmp_path / "view_course.feature"],
            contexts=["/ctx/behat_forum_capture.php"],
            base_url="http://localhost/moodle",
            proxy="localhost:9091",
        )
        data = yaml.safe_load(path.read_text())
        extensions = data["default"]["extensions"]
        assert extensions[MINK_EXTENSION]["base_url"] == "http://localhost/moodle"
        moodle = extensions[MOODLE_EXTENSION]
        assert moodle["features"] == [str(tmp_path / "view_course.feature")]
        assert moodle["steps_definitions"] == {"behat_forum_capture": "/ctx/behat_forum_capture.php"}
        assert moodle["capabilities"]["proxy"] == {"httpProxy": "localhost:9091", "proxyType": "manual"}

    def test_without_proxy(self, tmp_path):
        path = write_runner_config(tmp_path / "behat.yml", [], [], "http://localhost")
        data = yaml.safe_load(path.read_text())
        assert "capabilities" not in data["default"]["extensions"][MOODLE_EXTENSION]


class TestCommand:
    def test_command(self):
        assert runner_command("/data/behat.yml") == ["vendor/bin/behat", "--config", "/data/behat.yml"]

    def test_format(self):
        assert format_command(["behat", "--config", "/a b/behat.yml"]) == "behat --config '/a b/behat.yml'"


class TestRunRunner:
    @patch("subprocess.Popen")
    def test_streams_output(self, mock_popen):
        mock_popen.return_value = _process(["..\n", "   \n", "2 scenarios (2 passed)\n"])
        out = io.StringIO()
        assert run_runner(["behat"], cwd="/site", output=out) == 0
        assert out.getvalue() == "..\n2 scenarios (2 passed)\n"
        kwargs = mock_popen.call_args[1]
        assert kwargs["cwd"] == "/site"
        assert kwargs["stdout"] == subprocess.PIPE

    @patch("subprocess.Popen")
    def test_failure_emits_stderr(self, mock_popen):
        mock_popen.return_value = _process(["F\n"], returncode=2, stderr="Selenium not running\n")
        out = io.StringIO()
        with pytest.raises(ProcessError) as exc_info:
            run_runner(["behat"], output=out)
        assert exc_info.value.returncode == 2
        assert exc_info.value.stderr == "Selenium not running\n"
        assert "Selenium not running" in out.getvalue()

    @patch("subprocess.Popen", side_effect=FileNotFoundError("vendor/bin/behat"))
    def test_cannot_start(self, mock_popen):
        with pytest.raises(ProcessError, match="Error starting process"):
            run_runner(["vendor/bin/behat"], output=io.StringIO())


class TestRunRunnerProcess:
    """Real child processes (the current interpreter stands in for the runner)."""

    NOISY = (
        "import sys\n"
        "sys.stderr.write('Deprecated: x\\n' * 20000)\n"
        "sys.stderr.flush()\n"
        "print('2 scenarios (2 passed)')\n"
        "sys.exit(int(sys.argv[1]))\n"
    )

    def _run_noisy(self, exit_code, out):
        result = {}

        def target():
            try:
                result["code"] = run_runner(
                    [sys.executable, "-c", self.NOISY, str(exit_code)], output=out,
                )
            except ProcessError as exc:
                result["error"] = exc

        worker = threading.Thread(target=target, daemon=True)
        worker.start()
        worker.join(timeout=30)
        assert not worker.is_alive(), "run_runner blocked on a full stderr pipe"
        return result

    def test_large_stderr_does_not_block(self):
        out = io.StringIO()
        result = self._run_noisy(0, out)
        assert result["code"] == 0
        assert out.getvalue() == "2 scenarios (2 passed)\n"

    def test_large_stderr_reported_on_failure(self):
        result = self._run_noisy(3, io.StringIO())
        error = result["error"]
        assert error.returncode == 3
        assert error.stderr.count("Deprecated: x") == 20000
