"""perftoolkit CLI: generate load-test plans from captured scenario traffic.

Usage::

    python -m perftoolkit [--config FILE] [--data-dir DIR] [-v] <command>

Commands::

    features --size S [--output DIR]       Render feature files for a site size
    testplan --size S [--proxy HOST:PORT]  Prepare (and with --run, execute)
             [--port N] [--site-url URL]   a plan generation run
             [--run]
    hook start-plan                        Runner hooks, invoked once per event
    hook start-feature --feature F --title T
    hook start-capture --label L
    hook stop-capture --feature F --title T --label L
             [--assertion TEXT] [--extract REF=REGEX ...]
    hook csv-dataset --feature F --title T --file PATH --role ROLE
    hook end-plan

The config file defaults to ``$PERFTOOLKIT_CONFIG`` or ``./testplan.json``;
the data root to ``$PERFTOOLKIT_DATAROOT``.
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from perftoolkit.config import SITE_SIZE_LABELS, SiteSize, load_config
from perftoolkit.errors import ConfigError, ToolkitError
from perftoolkit.generator import DEFAULT_SITE_URL, TestPlanGenerator
from perftoolkit.proxy import DEFAULT_PROXY
from perftoolkit.recorder import CaptureRecorder
from perftoolkit.runner import RUNNER_EXECUTABLE
from perftoolkit.selector import NonInteractivePrompter, TerminalPrompter
from perftoolkit.templater import generate_features
from perftoolkit.workspace import Workspace, data_root_from_env

logger = logging.getLogger(__name__)

CONFIG_ENV = "PERFTOOLKIT_CONFIG"
DEFAULT_CONFIG = "testplan.json"


def _size_help() -> str:
    return ", ".join(f"{tag} ({label})" for tag, label in SITE_SIZE_LABELS.items())


def _extraction(value: str) -> tuple[str, str]:
    refname, sep, regex = value.partition("=")
    if not sep or not refname:
        raise argparse.ArgumentTypeError(f"Expected REF=REGEX, got {value!r}")
    return refname, regex


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="perftoolkit",
        description=(
            "perftoolkit: generate load-test plans from scripted browser sessions.\n\n"
            "Feature templates are rendered for a site size, run through a capture "
            "proxy, and the captured requests are assembled into a JMeter plan."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Scenario config file (default: ${CONFIG_ENV} or ./{DEFAULT_CONFIG})",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Data root for generated files (default: $PERFTOOLKIT_DATAROOT)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        default=False,
        help="Enable verbose logging",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    features = commands.add_parser("features", help="Render feature files")
    features.add_argument("--size", required=True, help=f"Site size: {_size_help()}")
    features.add_argument(
        "--output", type=Path, default=None,
        help="Output directory (default: the workspace tool directory)",
    )
    features.add_argument(
        "--features-dir", type=Path, default=None,
        help="Template directory (default: features/ next to the config file)",
    )

    testplan = commands.add_parser("testplan", help="Generate a test plan")
    testplan.add_argument("--size", required=True, help=f"Site size: {_size_help()}")
    testplan.add_argument("--proxy", default=DEFAULT_PROXY, help="Capture proxy REST address")
    testplan.add_argument("--port", default=None, help="Port for the proxy session")
    testplan.add_argument("--site-url", default=DEFAULT_SITE_URL, help="URL of the site under test")
    testplan.add_argument("--generated-size", default=None, help="Size the site data was generated with")
    testplan.add_argument("--features-dir", type=Path, default=None, help="Template directory")
    testplan.add_argument(
        "--run", action="store_true", default=False,
        help="Run the test runner now instead of printing its command",
    )
    testplan.add_argument("--runner", default=RUNNER_EXECUTABLE, help="Runner executable")
    testplan.add_argument("--runner-cwd", type=Path, default=None, help="Working directory of the runner")

    hook = commands.add_parser("hook", help="Runner hooks")
    hooks = hook.add_subparsers(dest="hook", required=True)
    hooks.add_parser("start-plan", help="Before the suite")
    hooks.add_parser("end-plan", help="After the suite")

    start_feature = hooks.add_parser("start-feature", help="Before a feature")
    _add_context_arguments(start_feature)

    start_capture = hooks.add_parser("start-capture", help="Before a captured step")
    start_capture.add_argument("--label", required=True)

    stop_capture = hooks.add_parser("stop-capture", help="After a captured step")
    _add_context_arguments(stop_capture)
    stop_capture.add_argument("--label", required=True)
    stop_capture.add_argument("--assertion", default=None, help="Text the response must contain")
    stop_capture.add_argument(
        "--extract", type=_extraction, action="append", default=[], metavar="REF=REGEX",
        help="Extract a variable from the response (repeatable)",
    )
    stop_capture.add_argument(
        "--non-interactive", action="store_true", default=False,
        help="Never prompt; fail when the captured request is ambiguous",
    )

    csv_dataset = hooks.add_parser("csv-dataset", help="When a step logs in as a role")
    _add_context_arguments(csv_dataset)
    csv_dataset.add_argument("--file", required=True, help="CSV file with user credentials")
    csv_dataset.add_argument("--role", required=True, help="Role archetype of the users")
    return parser


def _add_context_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--feature", required=True, help="Feature (scenario) name")
    parser.add_argument("--title", required=True, help="Feature title (thread group name)")


def _config_path(args: argparse.Namespace) -> Path:
    return Path(args.config or os.environ.get(CONFIG_ENV) or DEFAULT_CONFIG)


def _workspace(args: argparse.Namespace) -> Workspace:
    return Workspace(args.data_dir or data_root_from_env())


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.  Returns exit code (0=success, 1=failure)."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging
    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")

    try:
        # Size is checked before any file is read
        if args.command in ("features", "testplan"):
            SiteSize.parse(args.size)
        config = load_config(_config_path(args))
        if args.command == "features":
            return _run_features(args, config)
        if args.command == "testplan":
            return _run_testplan(args, config)
        return _run_hook(args, config)
    except ToolkitError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


def _run_features(args, config) -> int:
    output = args.output or _workspace(args).tool_dir
    result = generate_features(config, args.size, output, args.features_dir)
    for name, path in result.written.items():
        print(f"  {name}: {path}")
    for name, error in result.failed.items():
        print(f"  Error ({name}): {error}", file=sys.stderr)
    return 0 if result.success else 1


def _run_testplan(args, config) -> int:
    generator = TestPlanGenerator(
        config,
        _workspace(args),
        features_dir=args.features_dir,
        runner_executable=args.runner,
        runner_cwd=args.runner_cwd,
    )
    result = generator.create_test_plan(
        args.size,
        proxy=args.proxy,
        port=args.port,
        site_url=args.site_url,
        run=args.run,
        generated_size=args.generated_size,
    )
    return 0 if result.features.success else 1


def _run_hook(args, config) -> int:
    non_interactive = getattr(args, "non_interactive", False) or not sys.stdin.isatty()
    prompter = NonInteractivePrompter() if non_interactive else TerminalPrompter()
    recorder = CaptureRecorder(config, _workspace(args), prompter=prompter)

    if args.hook == "start-plan":
        recorder.start_plan()
    elif args.hook == "end-plan":
        location = recorder.end_plan()
        print("\nTest plan has been generated under:")
        print(f" - {location}")
    elif args.hook == "start-capture":
        recorder.start_capture(args.label)
    else:
        context = recorder.context(args.feature, args.title)
        if args.hook == "start-feature":
            recorder.start_feature(context)
        elif args.hook == "stop-capture":
            recorder.stop_capture(
                context, args.label, args.assertion, dict(args.extract) or None,
            )
        elif args.hook == "csv-dataset":
            recorder.add_csv_dataset(context, args.file, args.role)
        else:
            raise ConfigError(f"Unknown hook: {args.hook}")
    return 0
