"""
Wave assembly: join one wave's domain tables onto the demographics roster and
add the within-wave derived scores.

Standardized scores here are computed against the wave's own sample, so they
are comparable within a wave only. Anthropometric z-scores are a sex-specific
within-sample standardization, not WHO growth-reference scores.
"""
from __future__ import annotations

import logging
from typing import Dict, Optional

import polars as pl

from .quality import require_columns
from .tables import COGNITIVE_RAW, DOMAIN_COLUMNS, HH_KEYS, KEYS

logger = logging.getLogger(__name__)

COGNITIVE_Z = {raw: f"{raw.removesuffix('_correct')}_z" for raw in COGNITIVE_RAW}
ANTHRO_Z = {"height": "haz_approx", "weight": "waz_approx", "muac": "muacz_approx"}

JOIN_ORDER = ["depression", "cognitive", "anthropometry", "time_use", "health", "insurance", "expenditure"]


def _zscore(raw: pl.Expr, mean: pl.Expr, sd: pl.Expr) -> pl.Expr:
    return pl.when(raw.is_not_null() & sd.is_not_null() & (sd > 0)).then((raw - mean) / sd).otherwise(None)


def standardize_cognitive(df: pl.DataFrame) -> pl.DataFrame:
    """Within-wave z for each cognitive subscore plus ``cog_composite``.

    The composite is the mean of whichever z-scores are present; with none
    present it stays null.
    """
    exprs = []
    for raw, z in COGNITIVE_Z.items():
        col = pl.col(raw).cast(pl.Float64)
        exprs.append(_zscore(col, col.mean(), col.std()).alias(z))
    out = df.with_columns(exprs)
    return out.with_columns(pl.mean_horizontal([pl.col(z) for z in COGNITIVE_Z.values()]).alias("cog_composite"))


def anthropometric_zscores(df: pl.DataFrame, child_max_age: float = 17) -> pl.DataFrame:
    """Sex-specific within-wave z-scores for height, weight and arm circumference, children only."""
    eligible = (pl.col("age") <= child_max_age) & pl.col("sex").is_not_null()
    exprs = []
    for raw, z in ANTHRO_Z.items():
        keep = eligible & pl.col(raw).is_not_null()
        mean = pl.col(raw).filter(keep).mean().over("sex")
        sd = pl.col(raw).filter(keep).std().over("sex")
        exprs.append(pl.when(keep).then(_zscore(pl.col(raw), mean, sd)).otherwise(None).alias(z))
    return df.with_columns(exprs)


def _orphans(table: pl.DataFrame, roster: pl.DataFrame, keys) -> int:
    return table.join(roster.select(keys).unique(), on=keys, how="anti").height


def assemble_wave(
    tables: Dict[str, Optional[pl.DataFrame]],
    wave: int,
    child_max_age: float = 17,
) -> Optional[pl.DataFrame]:
    """One row per roster member with every domain's fields attached.

    Members missing from demographics are dropped; absent domain tables leave
    their fields null. Returns None when the wave has no roster at all.
    """
    demo = tables.get("demographics")
    if demo is None:
        logger.warning(f"Wave {wave}: no demographics roster; wave skipped")
        return None
    out = require_columns(demo, KEYS + ["src_row"], "assemble_wave")

    for domain in JOIN_ORDER:
        table = tables.get(domain)
        cols = DOMAIN_COLUMNS[domain]
        if table is None:
            out = out.with_columns([pl.lit(None, dtype=t).alias(c) for c, t in cols.items()])
            logger.info(f"Wave {wave}: {domain} absent; {len(cols)} fields left missing")
            continue
        keys = HH_KEYS if domain == "expenditure" else KEYS
        dropped = _orphans(table, out, keys)
        if dropped:
            logger.info(f"Wave {wave}: {domain} {dropped:,} rows not on the roster, dropped")
        out = out.join(table, on=keys, how="left")

    out = (
        out.with_columns(pl.lit(wave, dtype=pl.Int64).alias("wave"))
        .sort(["hhid", "src_row"])
    )
    out = standardize_cognitive(out)
    out = anthropometric_zscores(out, child_max_age)

    n_cog = out.filter(pl.col("cog_composite").is_not_null()).height
    logger.info(f"Wave {wave}: assembled {out.height:,} members, {n_cog:,} with a cognitive composite")
    return out
