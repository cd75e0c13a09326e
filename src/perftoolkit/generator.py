"""Test Plan Generator: prepare a run and hand it to the test runner.

``create_test_plan`` validates the size before touching any file, then:

  1. resets the workspace
  2. opens a proxy session to reserve a port and records the run options
  3. renders every feature and writes the runner config
  4. writes the tool info next to the final plan
  5. closes the proxy session (the runner's ``start-plan`` hook reopens it
     on the recorded port)
  6. runs the runner, or prints the command to run it by hand
"""

import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, TextIO, Union

from perftoolkit.config import ScenarioConfig, SiteSize
from perftoolkit.errors import ConfigError, PlanIOError
from perftoolkit.options import OptionStore
from perftoolkit.proxy import DEFAULT_PROXY, ProxyClient
from perftoolkit.runner import (
    RUNNER_EXECUTABLE,
    format_command,
    run_runner,
    runner_command,
    write_runner_config,
)
from perftoolkit.templater import FeatureBatchResult, generate_features
from perftoolkit.workspace import Workspace, tool_git_hash

logger = logging.getLogger(__name__)

DEFAULT_SITE_URL = "http://localhost"


@dataclass
class GenerationResult:
    """Outcome of ``create_test_plan``.

    Attributes:
        proxy_address: ``host:port`` the browser was pointed at.
        features: Per-scenario rendering outcome.
        command: The runner command line.
        ran: Whether the runner was executed.
    """

    proxy_address: str
    features: FeatureBatchResult = field(default_factory=FeatureBatchResult)
    command: list[str] = field(default_factory=list)
    ran: bool = False


class TestPlanGenerator:
    """Drives one generation run.

    Usage::

        generator = TestPlanGenerator(load_config("testplan.json"), Workspace(root))
        generator.create_test_plan("s", proxy="localhost:9090", run=True)
    """

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        config: ScenarioConfig,
        workspace: Workspace,
        features_dir: Optional[Path] = None,
        proxy_factory: Callable[[str], ProxyClient] = ProxyClient,
        runner_executable: str = RUNNER_EXECUTABLE,
        runner_cwd: Optional[Path] = None,
        output: Optional[TextIO] = None,
    ):
        self.config = config
        self.workspace = workspace
        self.features_dir = features_dir
        self.proxy_factory = proxy_factory
        self.runner_executable = runner_executable
        self.runner_cwd = runner_cwd
        self.output = output or sys.stdout

    def create_test_plan(
        self,
        size: Union[str, SiteSize],
        proxy: str = DEFAULT_PROXY,
        port: Optional[Union[int, str]] = None,
        site_url: str = DEFAULT_SITE_URL,
        run: bool = False,
        generated_size: Optional[str] = None,
    ) -> GenerationResult:
        """Prepare (and optionally run) the generation of a test plan.

        Raises:
            ConfigError: Invalid size, or no feature could be rendered.
            PlanIOError: Workspace, template or proxy failures.
            ProcessError: The runner failed.
        """
        size = SiteSize.parse(size)
        self.workspace.reset()

        client = self.proxy_factory(proxy)
        address = client.create_session(port)
        self._say(f"Proxy server running at: {address}")

        try:
            options = OptionStore(self.workspace.options_file)
            options.set("proxyurl", client.proxy_url)
            options.set("proxyport", client.port)
            options.set("size", size.value)
            options.set("siteurl", site_url)
            if generated_size:
                options.set("generatedsize", generated_size)

            features = generate_features(
                self.config, size, self.workspace.tool_dir, self.features_dir,
            )
            for name, error in features.failed.items():
                self._say(f"Skipped feature {name}: {error}")
            if not features.written:
                raise ConfigError("No feature could be generated; check the config file")

            write_runner_config(
                self.workspace.runner_config_file,
                features=list(features.written.values()),
                contexts=self._contexts(features),
                base_url=site_url,
                proxy=address,
            )
            self._write_tool_info(size)
        finally:
            client.close_session()

        result = GenerationResult(
            proxy_address=address,
            features=features,
            command=runner_command(self.workspace.runner_config_file, self.runner_executable),
        )

        if run:
            run_runner(result.command, cwd=self.runner_cwd, output=self.output)
            result.ran = True
            self._say("\nTest plan has been generated under:")
            self._say(f" - {self.workspace.final_plan_dir}")
        else:
            self._say("Run")
            self._say(f"  - {format_command(result.command)}\n")
        return result

    def _contexts(self, features: FeatureBatchResult) -> list[Path]:
        config_dir = self.config.source_path.parent if self.config.source_path else Path.cwd()
        contexts: list[Path] = []
        for name in features.written:
            for context in self.config.scenarios[name].contextpaths:
                path = Path(context)
                if not path.is_absolute():
                    path = config_dir / path
                if path not in contexts:
                    contexts.append(path)
        return contexts

    def _write_tool_info(self, size: SiteSize) -> None:
        repo_dir = self.config.source_path.parent if self.config.source_path else Path.cwd()
        info = {
            "version": self.config.version,
            "hash": tool_git_hash(repo_dir),
            "size": size.value,
        }
        path = self.workspace.tool_info_file
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(info, indent=2) + "\n", encoding="utf-8")
        except OSError as exc:
            raise PlanIOError(f"Could not write tool info {path}: {exc}") from exc

    def _say(self, message: str) -> None:
        print(message, file=self.output)
