"""Test Plan Document (C4): path-addressed edits of the persisted JMX plan.

The plan lives on disk between edits.  Every public operation loads the
current file (or the packaged template when no plan exists yet), applies
exactly one logical change, and writes the file back:

  - ``replace_values``: set the text of nodes located by path expressions
  - ``insert_fragment``: append a standalone XML fragment under a node

JMeter requires every content element to be followed by a sibling
``<hashTree>`` holding its children.  Callers keep that alternation by
inserting an empty ``<hashTree/>`` right after each content fragment.

Concurrent writers are not supported: there is no locking, the last
writer wins.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from lxml import etree

from perftoolkit.errors import PlanIOError

logger = logging.getLogger(__name__)

EMPTY_CONTAINER = "<hashTree/>"


# ── Exceptions ──


class PlanPathError(PlanIOError):
    """A path expression matched no element of the plan."""


class PlanFragmentError(PlanIOError):
    """A fragment is not a well-formed XML document."""


# ── Path Expressions ──


def xpath_literal(value: str) -> str:
    """Quote ``value`` as an XPath 1.0 string literal."""
    if "'" not in value:
        return f"'{value}'"
    if '"' not in value:
        return f'"{value}"'
    parts = value.split("'")
    return "concat(" + ", \"'\", ".join(f"'{part}'" for part in parts) + ")"


@dataclass(frozen=True)
class PathExpr:
    """Immutable builder for the XPath subset used to address plan nodes.

    Usage::

        anchor = (
            PathExpr.anywhere("ThreadGroup")
            .where("testname", "Course view")
            .following_sibling("hashTree")
            .nth(1)
        )
        str(anchor)
        # //ThreadGroup[@testname='Course view']/following-sibling::hashTree[1]
    """

    steps: tuple = ()

    @classmethod
    def root(cls, tag: str) -> "PathExpr":
        return cls((f"/{tag}",))

    @classmethod
    def anywhere(cls, tag: str) -> "PathExpr":
        return cls((f"//{tag}",))

    def child(self, tag: str) -> "PathExpr":
        return PathExpr(self.steps + (f"/{tag}",))

    def descendant(self, tag: str) -> "PathExpr":
        return PathExpr(self.steps + (f"//{tag}",))

    def following_sibling(self, tag: str) -> "PathExpr":
        return PathExpr(self.steps + (f"/following-sibling::{tag}",))

    def where(self, attribute: str, value: str) -> "PathExpr":
        """Restrict the last step to elements whose ``attribute`` equals ``value``."""
        return self._predicate(f"@{attribute}={xpath_literal(str(value))}")

    def nth(self, position: int) -> "PathExpr":
        """Restrict the last step to its ``position``-th match (1-based)."""
        return self._predicate(str(int(position)))

    def _predicate(self, predicate: str) -> "PathExpr":
        if not self.steps:
            raise ValueError("Cannot add a predicate to an empty path")
        return PathExpr(self.steps[:-1] + (f"{self.steps[-1]}[{predicate}]",))

    def __str__(self) -> str:
        return "".join(self.steps)


PathLike = Union[PathExpr, str]


# ── Document ──


def parse_fragment(fragment_xml: str) -> etree._Element:
    """Parse a fragment as a standalone document and return its root element.

    Raises:
        PlanFragmentError: If the fragment is not well-formed.
    """
    parser = etree.XMLParser(remove_blank_text=True)
    try:
        return etree.fromstring(fragment_xml.encode("utf-8"), parser)
    except etree.XMLSyntaxError as exc:
        raise PlanFragmentError(f"Invalid plan fragment: {exc}") from exc


class TestPlanDocument:
    """A JMX test plan persisted at ``path``.

    Args:
        path: Where the plan is written.
        template_path: Plan skeleton read while ``path`` does not exist yet.
    """

    __test__ = False  # not a pytest test class

    def __init__(self, path: Union[str, Path], template_path: Optional[Union[str, Path]] = None):
        self.path = Path(path)
        self.template_path = Path(template_path) if template_path else None

    # ── Loading / Saving ──

    def load(self) -> etree._ElementTree:
        """Parse the current plan, or the template if no plan was written yet."""
        source = self.path
        if not source.exists():
            if self.template_path is None:
                raise PlanIOError(f"Test plan not found: {self.path}")
            source = self.template_path

        parser = etree.XMLParser(remove_blank_text=True)
        try:
            return etree.parse(str(source), parser)
        except OSError as exc:
            raise PlanIOError(f"Could not read test plan {source}: {exc}") from exc
        except etree.XMLSyntaxError as exc:
            raise PlanIOError(f"Test plan {source} is not well-formed: {exc}") from exc

    def save(self, tree: etree._ElementTree) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tree.write(
                str(self.path),
                pretty_print=True,
                xml_declaration=True,
                encoding="UTF-8",
            )
        except OSError as exc:
            raise PlanIOError(f"Could not write test plan {self.path}: {exc}") from exc

    # ── Queries ──

    def query(self, path: PathLike) -> list:
        """Elements matching ``path`` in the current plan, in document order."""
        return _elements(self.load(), path)

    # ── Mutations ──

    def replace_values(self, pairs: Iterable[tuple[PathLike, Any]]) -> None:
        """Set the text content of the node located by each path.

        The whole batch is one logical change: all paths are applied to the
        same loaded tree, which is written once.

        Raises:
            PlanPathError: If any path matches no element.
        """
        tree = self.load()
        for path, value in pairs:
            node = _first(tree, path)
            for child in list(node):
                node.remove(child)
            node.text = "" if value is None else str(value)
        self.save(tree)

    def insert_fragment(self, path: PathLike, fragment_xml: str) -> etree._Element:
        """Append ``fragment_xml`` as the last child of the node at ``path``.

        Returns:
            The inserted element.

        Raises:
            PlanFragmentError: If the fragment is malformed.
            PlanPathError: If ``path`` matches no element.
        """
        fragment = parse_fragment(fragment_xml)
        tree = self.load()
        _first(tree, path).append(fragment)
        self.save(tree)
        logger.debug("Inserted <%s> at %s", fragment.tag, path)
        return fragment


def _elements(tree: etree._ElementTree, path: PathLike) -> list:
    try:
        found = tree.xpath(str(path))
    except etree.XPathError as exc:
        raise PlanPathError(f"Invalid path expression {path}: {exc}") from exc
    if not isinstance(found, list):
        return []
    return [node for node in found if isinstance(node, etree._Element)]


def _first(tree: etree._ElementTree, path: PathLike) -> etree._Element:
    nodes = _elements(tree, path)
    if not nodes:
        raise PlanPathError(f"Path matched nothing in test plan: {path}")
    if len(nodes) > 1:
        logger.debug("Path %s matched %d nodes, using the first", path, len(nodes))
    return nodes[0]
