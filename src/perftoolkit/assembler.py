"""Test Plan Assembler (C5): grow a JMX plan from captured requests.

Each operation renders one or more packaged XML fragments
(``fixtures/<name>.xml``, ``#!name!#`` placeholders) and appends them to the
plan at an anchor computed from the thread-group title:

  - ``start_plan``: fill the plan-wide user variables and global properties
  - ``start_thread_group``: one thread group per feature
  - ``add_result_collector``: results writer and page-data listener
  - ``add_csv_dataset``: per-role user credentials
  - ``add_request_data``: sampler, its arguments, assertion and extractors

Every content fragment is immediately followed by an empty ``<hashTree/>``
container in the same parent.  Values substituted into fragments are
XML-escaped; the fragment templates themselves are trusted.
"""

import html
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlsplit

from perftoolkit.config import LiteralValue, ScenarioConfig, SiteSize, resolve_value
from perftoolkit.errors import ConfigError
from perftoolkit.har import CapturedRequest
from perftoolkit.templater import TemplateNotFoundError, substitute
from perftoolkit.testplan import EMPTY_CONTAINER, PathExpr, TestPlanDocument

logger = logging.getLogger(__name__)

# ── Constants ──

FIXTURES_DIR = Path(__file__).parent / "fixtures"

PLAN_TEMPLATE = "testplan.template.jmx"


# ── Data Classes ──


@dataclass
class RunContext:
    """Identity of the feature being recorded.

    Attributes:
        feature_name: Scenario name in the config (feature file stem).
        thread_group: Feature title, used as the thread group's testname.
        size: Site size the plan is generated for.
    """

    feature_name: str
    thread_group: str
    size: SiteSize


# ── Fragments ──


def plan_template_path(fixtures_dir: Path = FIXTURES_DIR) -> Path:
    return Path(fixtures_dir) / PLAN_TEMPLATE


def load_fragment(name: str, fixtures_dir: Path = FIXTURES_DIR) -> str:
    """Read the raw XML of fragment ``name``.

    Raises:
        TemplateNotFoundError: If no such fragment is packaged.
    """
    path = Path(fixtures_dir) / f"{name}.xml"
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise TemplateNotFoundError(f"Xml for tag {name} not found: {path}") from None


def render_fragment(name: str, replacements: dict, fixtures_dir: Path = FIXTURES_DIR) -> str:
    """Load a fragment and substitute XML-escaped ``replacements`` into it."""
    escaped = {key: html.escape(str(value), quote=True) for key, value in replacements.items()}
    return substitute(load_fragment(name, fixtures_dir), escaped)


# ── Anchors ──


def plan_container() -> PathExpr:
    """The plan-level container that holds every thread group."""
    return PathExpr.root("jmeterTestPlan").child("hashTree").descendant("hashTree")


def thread_group_path(title: str) -> PathExpr:
    return PathExpr.anywhere("ThreadGroup").where("testname", title)


def thread_group_container(title: str) -> PathExpr:
    return thread_group_path(title).following_sibling("hashTree").nth(1)


def sampler_path(title: str, label: str) -> PathExpr:
    return thread_group_container(title).descendant("HTTPSamplerProxy").where("testname", label)


def sampler_arguments(title: str, label: str) -> PathExpr:
    return sampler_path(title, label).child("elementProp").child("collectionProp")


def sampler_container(title: str, label: str) -> PathExpr:
    return sampler_path(title, label).following_sibling("hashTree").nth(1)


def user_variable_path(name: str) -> PathExpr:
    return (
        PathExpr.anywhere("elementProp").where("name", name)
        .descendant("stringProp").where("name", "Argument.value")
    )


def global_property_path(name: str) -> PathExpr:
    return PathExpr.anywhere("stringProp").where("name", name)


# ── Assembler ──


class TestPlanAssembler:
    """Appends plan elements for the scenarios of one generation run.

    Usage::

        document = TestPlanDocument(plan_file, plan_template_path())
        assembler = TestPlanAssembler(document, config)
        assembler.start_plan("s", "http://localhost/moodle", "s")
        context = RunContext("view_course", "Course view", SiteSize.S)
        assembler.start_thread_group(context)
        assembler.add_request_data(context, "viewcourse", request)
    """

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        document: TestPlanDocument,
        config: ScenarioConfig,
        fixtures_dir: Path = FIXTURES_DIR,
    ):
        self.document = document
        self.config = config
        self.fixtures_dir = Path(fixtures_dir)

    def start_plan(
        self,
        size: Union[str, SiteSize],
        site_url: str,
        generated_size: Optional[str] = None,
    ) -> None:
        """Fill the plan-wide user variables and global properties."""
        size = SiteSize.parse(size)
        parts = urlsplit(site_url)

        variables = {
            "version": "" if self.config.version is None else self.config.version,
            "testplansize": size.value,
            "host": parts.hostname or "",
            "sitepath": parts.path or "",
            "generatedsitesize": generated_size or "",
        }
        pairs = [(user_variable_path(name), value) for name, value in variables.items()]

        for key, value in self.config.global_properties.items():
            resolved = resolve_value(self.config, value, size, "global", key)
            pairs.append((global_property_path(key), f"${{__property({key},{key},{resolved})}}"))

        self.document.replace_values(pairs)
        logger.info("Started %s test plan for %s", size.value, site_url)

    def start_thread_group(self, context: RunContext) -> None:
        """Append the thread group of a feature to the plan.

        Users and ramp-up configured per size become overridable properties
        (``${__P(users,N)}``); plain numbers are written as hard values.

        Raises:
            ConfigError: The feature has no execution settings, or a thread
                group with the same title already exists.
        """
        spec = self.config.scenario(context.feature_name)
        if spec.execution is None:
            raise ConfigError(
                f"Execution settings (users, rampup) missing for feature {context.feature_name}"
            )
        if self.document.query(thread_group_path(context.thread_group)):
            raise ConfigError(
                f"Thread group {context.thread_group!r} already exists in the test plan; "
                f"feature titles must be unique"
            )

        users = self._execution_value(context, "users", spec.execution.users)
        rampup = self._execution_value(context, "rampup", spec.execution.rampup)

        fragment = self._render("threadgroup", {
            "threadgroupname": context.thread_group,
            "users": users,
            "rampup": rampup,
        })
        self._insert_pair(plan_container(), fragment)
        logger.debug("Thread group %r: users=%s rampup=%s", context.thread_group, users, rampup)

    def add_result_collector(self, context: RunContext) -> None:
        anchor = thread_group_container(context.thread_group)
        replacements = {"threadgroupname": context.thread_group}
        self._insert_pair(anchor, self._render("resultcollector", replacements))
        self._insert_pair(anchor, self._render("listener", replacements))

    def add_csv_dataset(self, context: RunContext, file_path: str, role: str) -> None:
        fragment = self._render("csvdataset", {"filepath": file_path, "rolearchetype": role})
        self._insert_pair(thread_group_container(context.thread_group), fragment)

    def has_sampler(self, context: RunContext, label: str) -> bool:
        return bool(self.document.query(sampler_path(context.thread_group, label)))

    def add_request_data(
        self,
        context: RunContext,
        label: str,
        request: CapturedRequest,
        assertion: Optional[str] = None,
        extractions: Optional[dict[str, str]] = None,
    ) -> None:
        """Append a sampler replaying ``request`` to the feature's thread group.

        Args:
            context: The feature being recorded.
            label: Capture label, used as the sampler's testname.
            request: The selected captured request.
            assertion: Text the response must contain.
            extractions: Reference name -> regex, one extractor each.

        Raises:
            ConfigError: A sampler with this label already exists in the
                thread group.
        """
        title = context.thread_group
        if self.has_sampler(context, label):
            raise ConfigError(
                f"Capture label {label!r} is used twice in thread group {title!r}"
            )

        anchor = thread_group_container(title)
        self.document.insert_fragment(anchor, self._render("httpsamplerproxy", {
            "capturelabel": label,
            "path": request.path,
            "method": request.method,
        }))
        for name, value in request.query.items():
            self.document.insert_fragment(
                sampler_arguments(title, label),
                self._render("elementprop", {"name": name, "value": value}),
            )
        self.document.insert_fragment(anchor, EMPTY_CONTAINER)

        children = sampler_container(title, label)
        if assertion:
            self._insert_pair(children, self._render("responseassertion", {
                "capturelabel": label,
                "searchstring": assertion,
            }))
        for refname, regex in (extractions or {}).items():
            self._insert_pair(children, self._render("regexextractor", {
                "capturelabel": label,
                "refname": refname,
                "regex": regex,
            }))

        logger.debug(
            "Added %s %s as %r (%d params) to %r",
            request.method, request.path, label, len(request.query), title,
        )

    # ── Internals ──

    def _render(self, name: str, replacements: dict) -> str:
        return render_fragment(name, replacements, self.fixtures_dir)

    def _insert_pair(self, anchor: PathExpr, fragment: str) -> None:
        self.document.insert_fragment(anchor, fragment)
        self.document.insert_fragment(anchor, EMPTY_CONTAINER)

    def _execution_value(self, context: RunContext, key: str, value) -> str:
        resolved = resolve_value(self.config, value, context.size, context.feature_name, key)
        if isinstance(value, LiteralValue):
            return str(resolved)
        return f"${{__P({key},{resolved})}}"
