"""
Tests for household role resolution and mother selection.
"""
import polars as pl
import pytest

from conftest import frame, member
from maternal_panel.config import RoleConfig
from maternal_panel.quality import PipelineStateError
from maternal_panel.roles import CHILD, MOTHER, OTHER, resolve_roles
from maternal_panel.tables import build_demographics

COLUMNS = ["hhid", "pid", "age", "sex", "relation"]


def roster(config, *members):
    df = frame(members, COLUMNS)
    return build_demographics(df, config.waves[2].domain("demographics"), config, 2)


def role_of(roles, hhid, pid):
    return roles.filter((pl.col("hhid") == hhid) & (pl.col("pid") == pid)).row(0, named=True)


class TestClassification:
    """Mother and child rules."""

    def test_basic_household(self, config):
        demo = roster(
            config,
            member("1", "1", 40, "Male", "Head"),
            member("1", "2", 33, "Female", "Spouse"),
            member("1", "3", 8, "Female", "Daughter"),
            member("1", "4", 19, "Male", "Son"),
        )
        roles = resolve_roles(demo, RoleConfig(), wave=2)
        assert role_of(roles, "1", "1")["role"] == OTHER
        assert role_of(roles, "1", "2")["role"] == MOTHER
        assert role_of(roles, "1", "2")["is_mother"] is True
        assert role_of(roles, "1", "3")["role"] == CHILD
        assert role_of(roles, "1", "3")["female_child"] is True
        # 19 is too old to be a child
        assert role_of(roles, "1", "4")["role"] == OTHER
        assert role_of(roles, "1", "4")["female_child"] is None
        assert roles["wave"].unique().to_list() == [2]

    @pytest.mark.parametrize("age,sex,relation", [
        (14, "Female", "Spouse"),     # too young
        (30, "Male", "Spouse"),       # not female
        (30, "Female", "Sibling"),    # relation does not qualify
        (None, "Female", "Head"),     # age unknown
    ])
    def test_not_a_mother(self, config, age, sex, relation):
        demo = roster(config, member("1", "1", age, sex, relation))
        roles = resolve_roles(demo, RoleConfig())
        assert role_of(roles, "1", "1")["role"] != MOTHER
        assert roles.filter(pl.col("is_mother")).height == 0

    def test_numeric_relationship_codes(self, config):
        demo = roster(
            config,
            member("1", "1", 30, 2, 1),   # female head
            member("1", "2", 5, 1, 3),    # male child
        )
        roles = resolve_roles(demo, RoleConfig())
        assert role_of(roles, "1", "1")["is_mother"] is True
        assert role_of(roles, "1", "2")["role"] == CHILD
        assert role_of(roles, "1", "2")["female_child"] is False

    def test_parent_in_law_qualifies(self, config):
        demo = roster(config, member("1", "1", 62, "Female", "Mother-in-law"))
        assert resolve_roles(demo, RoleConfig())["is_mother"].to_list() == [True]


class TestMotherSelection:
    """Exactly one mother per household, chosen deterministically."""

    def test_first_in_source_order(self, config):
        demo = roster(
            config,
            member("1", "5", 60, "Female", "Mother-in-law"),
            member("1", "2", 30, "Female", "Spouse"),
            member("1", "3", 28, "Female", "Spouse"),
        )
        roles = resolve_roles(demo, RoleConfig())
        mothers = roles.filter(pl.col("is_mother"))
        assert mothers.height == 1
        assert mothers["pid"].to_list() == ["5"]
        assert roles.filter(pl.col("role") == MOTHER).height == 3

    def test_relation_priority(self, config):
        demo = roster(
            config,
            member("1", "5", 60, "Female", "Mother-in-law"),
            member("1", "3", 28, "Female", "Spouse"),
            member("1", "2", 30, "Female", "Spouse"),
        )
        cfg = RoleConfig(mother_selection="relation_priority")
        mothers = resolve_roles(demo, cfg).filter(pl.col("is_mother"))
        # Spouse ranks before parent-in-law; the earlier spouse row wins
        assert mothers["pid"].to_list() == ["3"]

    def test_household_without_mother(self, config):
        demo = roster(
            config,
            member("1", "1", 45, "Male", "Head"),
            member("1", "2", 7, "Female", "Child"),
            member("2", "1", 29, "Female", "Head"),
        )
        roles = resolve_roles(demo, RoleConfig())
        assert roles.filter(pl.col("is_mother"))["hhid"].to_list() == ["2"]

    def test_roster_without_role_columns(self):
        with pytest.raises(PipelineStateError):
            resolve_roles(pl.DataFrame({"hhid": ["1"], "pid": ["1"]}), RoleConfig())
