"""Tests for Test Plan Document (C4)."""

import pytest
from lxml import etree

from perftoolkit.errors import PlanIOError
from perftoolkit.testplan import (
    EMPTY_CONTAINER,
    PathExpr,
    PlanFragmentError,
    PlanPathError,
    TestPlanDocument,
    xpath_literal,
)

TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<jmeterTestPlan>
  <hashTree>
    <TestPlan testname="plan">
      <stringProp name="throughput">1</stringProp>
    </TestPlan>
    <hashTree/>
  </hashTree>
</jmeterTestPlan>
"""


@pytest.fixture
def document(tmp_path):
    template = tmp_path / "template.jmx"
    template.write_text(TEMPLATE, encoding="utf-8")
    return TestPlanDocument(tmp_path / "out" / "testplan.jmx", template)


class TestPathExpr:
    def test_builds_xpath(self):
        path = (
            PathExpr.anywhere("ThreadGroup").where("testname", "Course view")
            .following_sibling("hashTree").nth(1)
            .descendant("HTTPSamplerProxy").child("elementProp")
        )
        assert str(path) == (
            "//ThreadGroup[@testname='Course view']/following-sibling::hashTree[1]"
            "//HTTPSamplerProxy/elementProp"
        )

    def test_root(self):
        assert str(PathExpr.root("a").child("b")) == "/a/b"

    def test_immutable(self):
        base = PathExpr.anywhere("a")
        base.child("b")
        assert str(base) == "//a"

    def test_predicate_on_empty_path(self):
        with pytest.raises(ValueError):
            PathExpr().nth(1)

    def test_quoting(self):
        assert xpath_literal("plain") == "'plain'"
        assert xpath_literal("it's") == '"it\'s"'
        assert xpath_literal("it's \"x\"") == "concat('it', \"'\", 's \"x\"')"


class TestLoad:
    def test_template_used_until_plan_exists(self, document):
        assert document.load().getroot().tag == "jmeterTestPlan"
        assert not document.path.exists()

    def test_missing_plan_without_template(self, tmp_path):
        with pytest.raises(PlanIOError, match="not found"):
            TestPlanDocument(tmp_path / "none.jmx").load()

    def test_malformed_plan(self, tmp_path):
        path = tmp_path / "bad.jmx"
        path.write_text("<a><b></a>", encoding="utf-8")
        with pytest.raises(PlanIOError, match="not well-formed"):
            TestPlanDocument(path).load()


class TestReplaceValues:
    def test_sets_text_and_persists(self, document):
        document.replace_values([(PathExpr.anywhere("stringProp").where("name", "throughput"), "${x}")])
        assert document.path.exists()
        assert document.query("//stringProp")[0].text == "${x}"

    def test_output_has_declaration(self, document):
        document.replace_values([("//stringProp", 2)])
        assert document.path.read_text(encoding="utf-8").startswith("<?xml version='1.0' encoding='UTF-8'?>")

    def test_no_match(self, document):
        with pytest.raises(PlanPathError, match="matched nothing"):
            document.replace_values([("//missing", "x")])


class TestInsertFragment:
    def test_fragment_found_again_with_attributes(self, document):
        anchor = PathExpr.root("jmeterTestPlan").child("hashTree").descendant("hashTree")
        document.insert_fragment(anchor, '<ThreadGroup testname="Course &amp; forum" enabled="true"/>')
        document.insert_fragment(anchor, EMPTY_CONTAINER)

        found = document.query(PathExpr.anywhere("ThreadGroup").where("testname", "Course & forum"))
        assert len(found) == 1
        assert found[0].get("enabled") == "true"
        assert found[0].getnext().tag == "hashTree"
        etree.parse(str(document.path))

    def test_appended_as_last_child(self, document):
        document.insert_fragment("/jmeterTestPlan/hashTree", "<first/>")
        document.insert_fragment("/jmeterTestPlan/hashTree", "<second/>")
        children = [c.tag for c in document.query("/jmeterTestPlan/hashTree")[0]]
        assert children[-2:] == ["first", "second"]

    def test_first_match_used(self, document):
        document.insert_fragment("/jmeterTestPlan/hashTree", "<hashTree/>")
        document.insert_fragment("//hashTree", "<marker/>")
        assert document.query("/jmeterTestPlan/hashTree/marker")

    def test_malformed_fragment(self, document):
        with pytest.raises(PlanFragmentError):
            document.insert_fragment("//hashTree", "<open>")
        assert not document.path.exists()

    def test_no_anchor(self, document):
        with pytest.raises(PlanPathError):
            document.insert_fragment("//ThreadGroup", "<x/>")
