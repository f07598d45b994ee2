"""
Household role resolution: tag each member of a wave roster as mother
candidate, child candidate or other, and pick one mother per household.
"""
from __future__ import annotations

import logging
from typing import Optional

import polars as pl

from .config import RoleConfig
from .quality import require_columns

logger = logging.getLogger(__name__)

MOTHER = "mother_candidate"
CHILD = "child_candidate"
OTHER = "other"

ROLE_COLUMNS = ["hhid", "pid", "wave", "src_row", "role", "is_mother", "female_child"]


def _relation_rank(relations) -> pl.Expr:
    """Position of the member's relation in the configured mother relation list."""
    ranks = {r: i for i, r in enumerate(relations)}
    return pl.col("relation").replace_strict(ranks, default=len(ranks), return_dtype=pl.Int64)


def select_mothers(roles: pl.DataFrame, cfg: RoleConfig) -> pl.DataFrame:
    """One mother per household: the first candidate in source order.

    With ``mother_selection: relation_priority`` candidates are ordered by
    their relation's position in ``mother_relations`` first, then source order.
    """
    candidates = roles.filter(pl.col("role") == MOTHER)
    if cfg.mother_selection == "relation_priority":
        candidates = candidates.with_columns(_relation_rank(cfg.mother_relations).alias("__rank"))
        order = ["hhid", "__rank", "src_row"]
    else:
        order = ["hhid", "src_row"]
    return (
        candidates.sort(order)
        .unique(subset=["hhid"], keep="first", maintain_order=True)
        .select(["hhid", "pid"])
    )


def resolve_roles(demo: pl.DataFrame, cfg: RoleConfig, wave: Optional[int] = None) -> pl.DataFrame:
    """Role per roster member.

    Returns (hhid, pid, wave, src_row, role, is_mother, female_child) sorted by
    household then source row. ``female_child`` is null for non-children.
    """
    require_columns(demo, ["hhid", "pid", "src_row", "age", "sex", "relation"], "resolve_roles")

    is_mother_candidate = (
        (pl.col("sex") == "female")
        & (pl.col("age") >= cfg.mother_min_age)
        & pl.col("relation").is_in(cfg.mother_relations)
    ).fill_null(False)
    is_child_candidate = (
        (pl.col("age") <= cfg.child_max_age)
        & pl.col("relation").is_in(cfg.child_relations)
    ).fill_null(False)

    out = demo.select(["hhid", "pid", "src_row", "sex", "relation", "age"]).with_columns(
        pl.when(is_mother_candidate).then(pl.lit(MOTHER))
        .when(is_child_candidate).then(pl.lit(CHILD))
        .otherwise(pl.lit(OTHER))
        .alias("role")
    )

    selected = select_mothers(out, cfg).with_columns(pl.lit(True).alias("is_mother"))
    out = (
        out.join(selected, on=["hhid", "pid"], how="left")
        .with_columns([
            pl.col("is_mother").fill_null(False),
            pl.when(pl.col("role") == CHILD).then(pl.col("sex") == "female").otherwise(None).alias("female_child"),
            pl.lit(wave, dtype=pl.Int64).alias("wave"),
        ])
        .sort(["hhid", "src_row"])
        .select(ROLE_COLUMNS)
    )

    n_hh = out["hhid"].n_unique()
    n_mothers = out.filter(pl.col("is_mother")).height
    n_children = out.filter(pl.col("role") == CHILD).height
    n_multi = (
        out.filter(pl.col("role") == MOTHER).group_by("hhid").len().filter(pl.col("len") > 1).height
    )
    logger.info(
        f"Wave {wave}: roles resolved {n_mothers:,} mothers in {n_hh:,} households, {n_children:,} children"
        + (f" ({n_multi:,} households with several candidates, first kept)" if n_multi else "")
    )
    return out
