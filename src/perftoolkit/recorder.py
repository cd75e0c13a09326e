"""Capture Recorder: the runner hooks that turn a scripted session into a plan.

The runner invokes one hook per event, each in its own process, so every
piece of state lives on disk (options, plan, saved selections) and feature
identity travels in an explicit ``RunContext``:

  - ``start_plan``      before the suite: reopen the proxy session, start the plan
  - ``start_feature``   before a feature: thread group and result collector
  - ``start_capture``   before the steps of a capture label: new HAR
  - ``stop_capture``    after them: pick the request, append the sampler
  - ``add_csv_dataset`` when a step logs in as a role
  - ``end_plan``        after the suite: close the proxy session
"""

import json
import logging
from pathlib import Path
from typing import Optional

from perftoolkit.assembler import RunContext, TestPlanAssembler, plan_template_path
from perftoolkit.config import ScenarioConfig, SiteSize
from perftoolkit.errors import PlanIOError
from perftoolkit.har import CapturedRequest, parse_har
from perftoolkit.options import OptionStore
from perftoolkit.proxy import ProxyClient
from perftoolkit.selector import CaptureRequestSelector, Prompter, SelectionStore
from perftoolkit.testplan import TestPlanDocument
from perftoolkit.workspace import Workspace

logger = logging.getLogger(__name__)


class CaptureRecorder:
    """Hook-level orchestration of proxy, selector and assembler.

    Collaborators default to the ones backed by the workspace; tests
    inject their own.
    """

    def __init__(
        self,
        config: ScenarioConfig,
        workspace: Workspace,
        prompter: Optional[Prompter] = None,
        proxy: Optional[ProxyClient] = None,
        assembler: Optional[TestPlanAssembler] = None,
    ):
        self.config = config
        self.workspace = workspace
        self.options = OptionStore(workspace.options_file)
        self._proxy = proxy
        self.assembler = assembler or TestPlanAssembler(
            TestPlanDocument(workspace.plan_file, plan_template_path()),
            config,
        )
        self.selector = CaptureRequestSelector(
            prompter,
            SelectionStore(config, workspace.updated_config_file),
        )

    @property
    def proxy(self) -> ProxyClient:
        if self._proxy is None:
            self._proxy = ProxyClient(
                self.options.get("proxyurl"),
                self.options.get("proxyport"),
            )
        return self._proxy

    def context(self, feature_name: str, thread_group: str) -> RunContext:
        """Build the context of a feature from the stored run size."""
        return RunContext(
            feature_name=feature_name,
            thread_group=thread_group,
            size=SiteSize.parse(self.options.get("size")),
        )

    # ── Hooks ──

    def start_plan(self) -> None:
        """Reopen the capture session and start a fresh plan."""
        self.proxy.create_session(self.options.get("proxyport"))
        for stale in (self.workspace.plan_file, self.workspace.updated_config_file):
            try:
                stale.unlink()
            except FileNotFoundError:
                pass
            except OSError as exc:
                raise PlanIOError(f"Could not remove {stale}: {exc}") from exc
        self.workspace.clean_har_dir()

        self.assembler.start_plan(
            self.options.get("size"),
            self.options.get("siteurl"),
            self.options.get_or("generatedsize"),
        )

    def start_feature(self, context: RunContext) -> None:
        self.assembler.start_thread_group(context)
        self.assembler.add_result_collector(context)
        logger.info("Recording feature %s (%s)", context.feature_name, context.thread_group)

    def start_capture(self, label: str) -> None:
        self.proxy.new_har(label)

    def stop_capture(
        self,
        context: RunContext,
        label: str,
        assertion: Optional[str] = None,
        extractions: Optional[dict[str, str]] = None,
    ) -> Optional[CapturedRequest]:
        """Turn the traffic captured since ``start_capture`` into a sampler.

        A scenario outline replays its steps once per example row, so the
        same label comes back for every row.  Only the first capture becomes
        a sampler; the later ones are dropped and None is returned.

        The raw HAR is kept in the workspace until the sampler is written,
        so a failed selection can be inspected.  The selection is saved to
        the updated config only after that.
        """
        har = self.proxy.get_har(label)
        if self.assembler.has_sampler(context, label):
            logger.info(
                "Capture %r already recorded in %r; skipping repeat",
                label, context.thread_group,
            )
            return None

        har_file = self.workspace.har_file(label)
        try:
            har_file.parent.mkdir(parents=True, exist_ok=True)
            har_file.write_text(json.dumps(har), encoding="utf-8")
        except OSError as exc:
            raise PlanIOError(f"Could not save capture {har_file}: {exc}") from exc

        request = self.selector.select_for(
            context.feature_name, label, parse_har(har), save=False,
        )
        self.assembler.add_request_data(context, label, request, assertion, extractions)
        self.selector.remember(context.feature_name, label, request)

        har_file.unlink()
        return request

    def add_csv_dataset(self, context: RunContext, file_path: str, role: str) -> None:
        self.assembler.add_csv_dataset(context, file_path, role)

    def end_plan(self) -> Path:
        """Close the capture session; returns where the plan was written."""
        self.proxy.close_session()
        return self.workspace.final_plan_dir
