"""perftoolkit: load-test plan generation from captured scenario traffic."""

from perftoolkit.assembler import RunContext, TestPlanAssembler
from perftoolkit.config import (
    AliasPath,
    AmbiguousPlaceholderError,
    LiteralValue,
    ScenarioConfig,
    ScenarioSpec,
    SiteSize,
    SizedVariant,
    load_config,
    parse_config,
    resolve,
)
from perftoolkit.errors import (
    CaptureMismatchError,
    ConfigError,
    PlanIOError,
    ProcessError,
    ToolkitError,
    UnresolvedPlaceholderError,
)
from perftoolkit.generator import GenerationResult, TestPlanGenerator
from perftoolkit.har import CapturedRequest, parse_har
from perftoolkit.options import OptionNotSetError, OptionStore
from perftoolkit.proxy import ProxyClient, ProxyError
from perftoolkit.recorder import CaptureRecorder
from perftoolkit.selector import (
    CaptureRequestSelector,
    CaptureSelectionError,
    NonInteractivePrompter,
    SelectionStore,
    TerminalPrompter,
)
from perftoolkit.templater import (
    FeatureBatchResult,
    TemplateNotFoundError,
    generate_features,
    render,
    substitute,
)
from perftoolkit.testplan import PathExpr, PlanFragmentError, PlanPathError, TestPlanDocument
from perftoolkit.workspace import Workspace

__all__ = [
    # Errors
    "ToolkitError",
    "ConfigError",
    "UnresolvedPlaceholderError",
    "CaptureMismatchError",
    "PlanIOError",
    "ProcessError",
    # Scenario Configuration (C1)
    "ScenarioConfig",
    "ScenarioSpec",
    "SiteSize",
    "LiteralValue",
    "SizedVariant",
    "AliasPath",
    "AmbiguousPlaceholderError",
    "load_config",
    "parse_config",
    "resolve",
    # Scenario Templater (C2)
    "render",
    "substitute",
    "generate_features",
    "FeatureBatchResult",
    "TemplateNotFoundError",
    # Capture Request Selector (C3)
    "CapturedRequest",
    "parse_har",
    "CaptureRequestSelector",
    "CaptureSelectionError",
    "TerminalPrompter",
    "NonInteractivePrompter",
    "SelectionStore",
    # Test Plan Document (C4)
    "TestPlanDocument",
    "PathExpr",
    "PlanPathError",
    "PlanFragmentError",
    # Test Plan Assembler (C5)
    "TestPlanAssembler",
    "RunContext",
    # Run orchestration
    "OptionStore",
    "OptionNotSetError",
    "Workspace",
    "ProxyClient",
    "ProxyError",
    "CaptureRecorder",
    "TestPlanGenerator",
    "GenerationResult",
]
