"""Tests for the Test Plan Generator (proxy and runner patched)."""

import io
import json
from unittest.mock import MagicMock, patch

import pytest
import yaml

from perftoolkit.errors import ConfigError, ProcessError
from perftoolkit.generator import TestPlanGenerator
from perftoolkit.options import OptionStore
from perftoolkit.proxy import ProxyClient
from perftoolkit.templater import TemplateNotFoundError
from perftoolkit.workspace import Workspace


@pytest.fixture
def proxy():
    client = MagicMock(spec=ProxyClient)
    client.proxy_url = "http://localhost:9090"
    client.port = 9091
    client.create_session.return_value = "localhost:9091"
    return client


@pytest.fixture
def workspace(tmp_path):
    return Workspace(tmp_path / "data")


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def generator(example_config, workspace, proxy, output):
    return TestPlanGenerator(
        example_config, workspace, proxy_factory=lambda url: proxy, output=output,
    )


class TestCreateTestPlan:
    def test_prepares_run(self, generator, workspace, proxy, output):
        result = generator.create_test_plan("s", site_url="http://localhost/moodle")

        assert result.proxy_address == "localhost:9091"
        assert not result.ran
        assert set(result.features.written) == {"view_course", "view_forum"}
        assert workspace.feature_file("view_course").exists()

        options = OptionStore(workspace.options_file)
        assert options.get("size") == "s"
        assert options.get("proxyport") == 9091
        assert options.get("siteurl") == "http://localhost/moodle"

        runner_config = yaml.safe_load(workspace.runner_config_file.read_text())
        assert runner_config["default"]["extensions"]["Moodle\\BehatExtension\\Extension"][
            "capabilities"]["proxy"]["httpProxy"] == "localhost:9091"

        info = json.loads(workspace.tool_info_file.read_text())
        assert info["version"] == "2015061800"
        assert info["size"] == "s"

        proxy.close_session.assert_called_once_with()
        assert "Proxy server running at: localhost:9091" in output.getvalue()
        assert "vendor/bin/behat --config" in output.getvalue()

    def test_context_paths_resolved_from_config_dir(self, generator, workspace, example_project):
        generator.create_test_plan("s")
        runner_config = yaml.safe_load(workspace.runner_config_file.read_text())
        steps = runner_config["default"]["extensions"]["Moodle\\BehatExtension\\Extension"][
            "steps_definitions"]
        assert steps == {
            "behat_forum_capture": str(example_project / "contexts" / "behat_forum_capture.php"),
        }

    def test_invalid_size_touches_nothing(self, generator, workspace, proxy):
        with pytest.raises(ConfigError):
            generator.create_test_plan("xxl")
        assert not workspace.tool_dir.exists()
        proxy.create_session.assert_not_called()

    def test_previous_run_dropped(self, generator, workspace):
        workspace.final_plan_dir.mkdir(parents=True)
        workspace.plan_file.write_text("<old/>")
        generator.create_test_plan("s")
        assert not workspace.plan_file.exists()

    def test_session_closed_on_failure(self, write_config, workspace, proxy, output):
        config = write_config({"f": {"scenario": {}}})
        generator = TestPlanGenerator(config, workspace, proxy_factory=lambda url: proxy, output=output)
        with pytest.raises(TemplateNotFoundError):
            generator.create_test_plan("s")
        proxy.close_session.assert_called_once_with()

    @patch("perftoolkit.generator.run_runner")
    def test_run(self, mock_run, generator, workspace, output):
        mock_run.return_value = 0
        result = generator.create_test_plan("s", run=True)
        assert result.ran
        command = mock_run.call_args[0][0]
        assert command == ["vendor/bin/behat", "--config", str(workspace.runner_config_file)]
        assert "Test plan has been generated under:" in output.getvalue()

    @patch("perftoolkit.generator.run_runner", side_effect=ProcessError("Runner exited with code 1", 1))
    def test_run_failure_propagates(self, mock_run, generator):
        with pytest.raises(ProcessError):
            generator.create_test_plan("s", run=True)

    def test_all_features_failing(self, write_config, tmp_path, workspace, proxy, output):
        features = tmp_path / "features"
        features.mkdir()
        (features / "f.feature").write_text("#!missing!#")
        config = write_config({"f": {"scenario": {}}})
        generator = TestPlanGenerator(config, workspace, proxy_factory=lambda url: proxy, output=output)
        with pytest.raises(ConfigError, match="No feature could be generated"):
            generator.create_test_plan("s")
        assert "Skipped feature f" in output.getvalue()
