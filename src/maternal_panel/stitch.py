"""
Panel stitching: wave assemblies -> one long (person, wave) frame with
surrogate keys and household covariates.

person_id groups rows by (hhid, pid). Surveys do not always keep member
indices stable across waves, so ``check_age_progression`` cross-checks the
reported ages and reports any person whose age does not advance with the
calendar.
"""
from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional

import polars as pl

from .config import StitchConfig
from .quality import AGE_PROGRESSION, MISSING_COLUMN, DataQualityLog, PipelineStateError

logger = logging.getLogger(__name__)

PANEL_ORDER = ["wave", "hhid", "src_row"]
DAYS_PER_YEAR = 365.25


def harmonize_fields(
    df: pl.DataFrame,
    wave: int,
    aliases: Mapping[str, Mapping[int, str]],
    quality: Optional[DataQualityLog] = None,
) -> pl.DataFrame:
    """Rename each wave-specific source field to its canonical name."""
    renames: Dict[str, str] = {}
    for canonical, by_wave in aliases.items():
        source = by_wave.get(wave)
        if source is None or source == canonical:
            continue
        if source not in df.columns:
            if quality is not None:
                quality.add("panel", canonical, MISSING_COLUMN, wave=wave, value=source)
            logger.warning(f"Stitch: wave {wave} has no {source!r} for {canonical!r}")
            continue
        renames[source] = canonical
    if not renames:
        return df
    clash = [c for c in renames.values() if c in df.columns]
    return df.drop(clash).rename(renames)


def _surrogate(df: pl.DataFrame, keys, name: str) -> pl.DataFrame:
    ids = (
        df.select(keys).unique().sort(keys)
        .with_row_index(name, offset=1)
        .with_columns(pl.col(name).cast(pl.Int64))
    )
    return df.join(ids, on=keys, how="left")


def household_covariates(df: pl.DataFrame, child_max_age: float = 17) -> pl.DataFrame:
    """Household size, child count and per-capita consumption per (hhid, wave)."""
    hh = ["hhid", "wave"]
    out = df.with_columns([
        pl.col("pid").count().over(hh).cast(pl.Int64).alias("hh_size"),
        (pl.col("age") <= child_max_age).fill_null(False).cast(pl.Int64).sum().over(hh).alias("n_children"),
    ])
    out = out.with_columns((pl.col("exp_total") / pl.col("hh_size")).alias("pc_consumption"))
    return out.with_columns(
        pl.when(pl.col("pc_consumption") > 0).then(pl.col("pc_consumption").log()).otherwise(None)
        .alias("log_pc_consumption")
    )


def check_age_progression(
    panel: pl.DataFrame,
    tolerance_years: float = 2.0,
    quality: Optional[DataQualityLog] = None,
) -> pl.DataFrame:
    """Flag persons whose age change between waves disagrees with elapsed time.

    Elapsed time comes from the interview dates, else from the survey years.
    Adds ``age_progression_ok`` (null for a person's first wave or when the
    gap is unknown).
    """
    def prev(c: str) -> pl.Expr:
        return pl.col(c).shift(1).over("person_id")

    by_date = (pl.col("interview_date") - prev("interview_date")).dt.total_days() / DAYS_PER_YEAR
    by_year = (pl.col("survey_year") - prev("survey_year")).cast(pl.Float64)
    out = (
        panel.sort(["person_id", "wave"])
        .with_columns([
            prev("age").alias("__prev_age"),
            pl.coalesce([by_date, by_year]).alias("__gap"),
        ])
        .with_columns(
            pl.when(pl.col("__prev_age").is_null() | pl.col("age").is_null() | pl.col("__gap").is_null())
            .then(None)
            .otherwise(((pl.col("age") - pl.col("__prev_age")) - pl.col("__gap")).abs() <= tolerance_years)
            .alias("age_progression_ok")
        )
    )
    bad = out.filter(~pl.col("age_progression_ok"))
    if bad.height:
        bad = bad.with_columns(
            (pl.col("__prev_age").cast(pl.Utf8) + "->" + pl.col("age").cast(pl.Utf8)).alias("__ages")
        )
        if quality is not None:
            quality.add_rows(bad, "panel", "age", AGE_PROGRESSION, value_col="__ages")
        logger.warning(f"Stitch: {bad['person_id'].n_unique():,} persons with implausible age progression")
    return out.drop(["__prev_age", "__gap"]).sort(PANEL_ORDER)


def stitch(
    assemblies: Mapping[int, pl.DataFrame],
    cfg: Optional[StitchConfig] = None,
    wave_years: Optional[Mapping[int, Optional[int]]] = None,
    child_max_age: float = 17,
    quality: Optional[DataQualityLog] = None,
) -> pl.DataFrame:
    """Concatenate wave assemblies into the long member panel ordered by (wave, hhid, src_row)."""
    cfg = cfg or StitchConfig()
    wave_years = wave_years or {}
    frames = []
    for wave, df in sorted(assemblies.items()):
        if df is None:
            continue
        df = harmonize_fields(df, wave, cfg.field_aliases, quality)
        frames.append(df.with_columns(pl.lit(wave_years.get(wave), dtype=pl.Int64).alias("survey_year")))
    if not frames:
        raise PipelineStateError("stitch: no wave produced an assembly")

    panel = pl.concat(frames, how="diagonal_relaxed")
    panel = _surrogate(panel, ["hhid", "pid"], "person_id")
    panel = _surrogate(panel, ["hhid"], "household_id")
    panel = household_covariates(panel, child_max_age)
    panel = check_age_progression(panel, cfg.age_tolerance_years, quality)

    logger.info(
        f"Stitch: stitched {panel.height:,} member-waves, {panel['person_id'].n_unique():,} persons "
        f"in {panel['household_id'].n_unique():,} households over {len(frames)} waves"
    )
    return panel
