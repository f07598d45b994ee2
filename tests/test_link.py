"""
Tests for mother-child linkage and the analysis sample flag.
"""
import polars as pl
import pytest

from conftest import k10_values, make_config, member, raw_wave
from maternal_panel.link import link_mothers, mark_analysis_sample
from maternal_panel.pipeline import build_panel
from maternal_panel.quality import PipelineStateError


def household(mother_k10=25):
    return [
        member("H", 1, 38, "Male", "Head"),
        member("H", 2, 34, "Female", "Spouse", k10=k10_values(mother_k10)),
        member("H", 3, 12, "Female", "Child", ravens=9),
        member("H", 4, 9, "Male", "Child", ravens=5),
        member("H", 5, 4, "Female", "Child"),
        member("G", 1, 28, "Female", "Head", k10=k10_values(31)),
        member("G", 2, 6, "Male", "Child", ravens=3),
    ]


def build(members):
    cfg = make_config()
    return build_panel({2: raw_wave(members)}, cfg).panel


def row(panel, hhid, pid):
    return panel.filter((pl.col("hhid") == hhid) & (pl.col("pid") == pid)).row(0, named=True)


class TestFanOut:
    """One mother row serves every child in the household-wave."""

    def test_children_share_mother_fields(self):
        panel = build(household())
        h = panel.filter(pl.col("hhid") == "H")
        assert h["pid"].to_list() == ["3", "4", "5"]
        assert h["m_pid"].unique().to_list() == ["2"]
        m_cols = [c for c in panel.columns if c.startswith("m_")]
        assert h.select(m_cols).unique().height == 1
        assert h["m_k10_score"].to_list() == [25, 25, 25]
        assert h["m_depression_cat"].unique().to_list() == ["moderate"]

    def test_only_child_rows_are_output(self):
        panel = build(household())
        assert panel.height == 4
        assert "2" not in panel.filter(pl.col("hhid") == "H")["pid"].to_list()

    def test_mother_change_propagates_within_household_only(self):
        before = build(household(25))
        after = build(household(33))
        assert after.filter(pl.col("hhid") == "H")["m_k10_score"].to_list() == [33, 33, 33]
        assert after.filter(pl.col("hhid") == "G").equals(before.filter(pl.col("hhid") == "G"))

    def test_prefixes(self):
        panel = build(household())
        r = row(panel, "G", "2")
        assert r["c_age"] == 6
        assert r["c_sex"] == "male"
        assert r["m_age"] == 28
        assert r["ravens_correct"] == 3
        assert "c_ravens_correct" not in panel.columns
        assert r["female_child"] is False


class TestNoMother:
    """A child with no eligible co-resident mother stays in the panel unlinked."""

    def test_unlinked_child(self):
        panel = build([
            member("N", 1, 40, "Male", "Head"),
            member("N", 2, 7, "Female", "Child", ravens=6),
        ])
        r = row(panel, "N", "2")
        assert r["m_pid"] is None
        assert r["m_k10_score"] is None
        assert r["analysis_sample"] is False


class TestAnalysisSample:
    """K10 present and at least one cognitive score present."""

    @pytest.mark.parametrize("has_k10,has_cog,expected", [
        (True, True, True),
        (True, False, False),
        (False, True, False),
        (False, False, False),
    ])
    def test_quadrants(self, has_k10, has_cog, expected):
        mother = {"k10": k10_values(22)} if has_k10 else {}
        child = {"ravens": 4} if has_cog else {}
        panel = build([
            member("Q", 1, 31, "Female", "Head", **mother),
            member("Q", 2, 8, "Male", "Child", **child),
            # Keeps the depression and cognitive tables non-empty
            member("Z", 1, 50, "Male", "Head", k10=k10_values(12), ravens=2),
        ])
        assert row(panel, "Q", "2")["analysis_sample"] is expected

    def test_requires_linked_columns(self):
        with pytest.raises(PipelineStateError):
            mark_analysis_sample(pl.DataFrame({"hhid": ["1"]}))


class TestLinkOrdering:
    """Linking before roles are resolved is a pipeline error."""

    def test_roles_missing(self):
        panel = pl.DataFrame({"hhid": ["1"], "pid": ["1"], "wave": [1], "src_row": [0]})
        with pytest.raises(PipelineStateError):
            link_mothers(panel, None)

    def test_roles_for_other_rows(self):
        panel = pl.DataFrame({"hhid": ["1"], "pid": ["1"], "wave": [1], "src_row": [0]})
        roles = pl.DataFrame({
            "hhid": ["2"], "pid": ["1"], "wave": [1], "src_row": [0],
            "role": ["other"], "is_mother": [False], "female_child": [None],
        }, schema_overrides={"female_child": pl.Boolean})
        with pytest.raises(PipelineStateError):
            link_mothers(panel, roles)
