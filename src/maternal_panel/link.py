"""
Mother-child linkage within each household-wave.

Every child row receives the household-wave's selected mother's member fields
under an ``m_`` prefix; child member fields get ``c_`` (cognitive scores keep
their plain names). Many children may share one mother row.
"""
from __future__ import annotations

import logging

import polars as pl

from .assemble import COGNITIVE_Z
from .quality import PipelineStateError, require_columns
from .roles import CHILD, ROLE_COLUMNS
from .stitch import PANEL_ORDER
from .tables import COGNITIVE_RAW, DOMAIN_COLUMNS

logger = logging.getLogger(__name__)

KEY_FIELDS = {"hhid", "pid", "wave", "src_row", "person_id", "household_id"}
HOUSEHOLD_FIELDS = {
    "survey_year", "interview_date", "ea_id", "region",
    "hh_size", "n_children", "pc_consumption", "log_pc_consumption",
    *DOMAIN_COLUMNS["expenditure"],
}
UNPREFIXED_CHILD_FIELDS = {*COGNITIVE_RAW, *COGNITIVE_Z.values(), "cog_composite"}


def member_fields(panel: pl.DataFrame) -> list:
    """Person-level columns of the member panel, in panel order."""
    return [c for c in panel.columns if c not in KEY_FIELDS and c not in HOUSEHOLD_FIELDS]


def link_mothers(panel: pl.DataFrame, roles: pl.DataFrame) -> pl.DataFrame:
    """Child rows of ``panel`` with their co-resident mother's fields attached.

    ``roles`` is the stacked output of ``resolve_roles`` for every wave; calling
    this without it is a pipeline ordering error.
    """
    if roles is None:
        raise PipelineStateError("link_mothers: roles have not been resolved")
    require_columns(roles, ROLE_COLUMNS, "link_mothers")
    require_columns(panel, ["hhid", "pid", "wave", "src_row"], "link_mothers")

    fields = member_fields(panel)
    tagged = panel.join(
        roles.select(["hhid", "pid", "wave", "role", "is_mother", "female_child"]),
        on=["hhid", "pid", "wave"],
        how="left",
    )
    if tagged.height and tagged["role"].null_count() == tagged.height:
        raise PipelineStateError("link_mothers: roles do not cover any panel row")

    mothers = tagged.filter(pl.col("is_mother").fill_null(False)).select([
        "hhid",
        "wave",
        pl.col("pid").alias("m_pid"),
        *([pl.col("person_id").alias("m_person_id")] if "person_id" in tagged.columns else []),
        *[pl.col(c).alias(f"m_{c}") for c in fields],
    ])
    if mothers.select(["hhid", "wave"]).is_duplicated().any():
        raise PipelineStateError("link_mothers: more than one mother selected in a household-wave")

    children = (
        tagged.filter(pl.col("role") == CHILD)
        .drop(["role", "is_mother"])
        .rename({c: f"c_{c}" for c in fields if c not in UNPREFIXED_CHILD_FIELDS})
    )
    linked = children.join(mothers, on=["hhid", "wave"], how="left").sort(PANEL_ORDER)

    n_linked = linked.filter(pl.col("m_pid").is_not_null()).height
    share = n_linked / linked.height if linked.height else 0.0
    logger.info(f"Link: linked {n_linked:,} of {linked.height:,} child rows to a mother ({share:.1%})")
    return linked


def mark_analysis_sample(linked: pl.DataFrame) -> pl.DataFrame:
    """``analysis_sample`` = maternal K10 present and at least one raw cognitive score present."""
    require_columns(linked, ["m_k10_score", *COGNITIVE_RAW], "mark_analysis_sample")
    any_cognitive = pl.any_horizontal([pl.col(c).is_not_null() for c in COGNITIVE_RAW])
    out = linked.with_columns((pl.col("m_k10_score").is_not_null() & any_cognitive).alias("analysis_sample"))
    n = out.filter(pl.col("analysis_sample")).height
    share = n / out.height if out.height else 0.0
    logger.info(f"Link: analysis sample {n:,} of {out.height:,} child rows ({share:.1%})")
    return out
