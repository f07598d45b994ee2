"""
Prenatal depression exposure.

Two ways to attach a maternal K10 score measured during pregnancy to a child:

  concurrent     the linked mother reported being pregnant in the child's
                 wave and has a K10 score that wave
  birth timing   the child's estimated birth date falls within ``window``
                 months after an earlier wave's household interview; that
                 wave's mother K10 is the exposure

The combined score takes the concurrent value when present, else the timing
value. Birth dates before ``min_birth_year`` or after the reporting wave's
interview (plus slack), judged at the precision they were reported, are rejected
as implausible. A year-only or year+month date that lands past that bound
after imputation is pulled back to the bound.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Optional, Tuple

import polars as pl

from .config import PrenatalConfig, ThresholdConfig
from .quality import IMPLAUSIBLE, DataQualityLog, require_columns
from .stitch import PANEL_ORDER
from .tables import compose_date, date_precision

logger = logging.getLogger(__name__)

CONCURRENT = "concurrent"
BIRTH_TIMING = "birth_timing"


def elapsed_months(later: pl.Expr, earlier: pl.Expr, days_per_month: float = 30.44) -> pl.Expr:
    """Months from ``earlier`` to ``later``; negative when ``later`` came first."""
    return (later - earlier).dt.total_days() / days_per_month


def in_utero(months: pl.Expr, window: float = 9) -> pl.Expr:
    """True when a birth ``months`` after the interview puts the interview inside the pregnancy."""
    return (months >= 0) & (months <= window)


def window_label(window: float) -> str:
    return f"w{int(window)}" if float(window).is_integer() else "w" + f"{window:g}".replace(".", "_")


# ---------------- Inputs ---------------- #

def estimate_birth_dates(
    members: pl.DataFrame,
    cfg: PrenatalConfig,
    quality: Optional[DataQualityLog] = None,
) -> pl.DataFrame:
    """One birth date per person: year+month reports before year-only, most recent wave first.

    Returns (person_id, birth_date, birth_date_precision, birth_date_wave).
    """
    require_columns(
        members,
        ["person_id", "hhid", "pid", "wave", "interview_date", "birth_year", "birth_month", "birth_day"],
        "estimate_birth_dates",
    )
    y, m, d = pl.col("birth_year"), pl.col("birth_month"), pl.col("birth_day")
    cands = (
        members.filter(y.is_not_null())
        .select(["person_id", "hhid", "pid", "wave", "interview_date", "birth_year", "birth_month", "birth_day"])
        .with_columns([
            compose_date(y, m, d).alias("birth_date"),
            date_precision(y, m, d).alias("birth_date_precision"),
        ])
    )

    latest = members["interview_date"].max()
    cands = cands.with_columns(
        (pl.coalesce([pl.col("interview_date"), pl.lit(latest, dtype=pl.Date)]) + pl.duration(days=cfg.future_slack_days))
        .alias("__limit")
    )
    lim, prec = pl.col("__limit"), pl.col("birth_date_precision")
    after = (
        pl.when(prec == 1).then(y > lim.dt.year())
        .when(prec == 2).then((y > lim.dt.year()) | ((y == lim.dt.year()) & (m > lim.dt.month())))
        .otherwise(pl.col("birth_date") > lim)
    )
    implausible = (
        pl.col("birth_date").is_null()
        | (pl.col("birth_date") < pl.lit(date(cfg.min_birth_year, 1, 1)))
        | after.fill_null(False)
    )
    bad = cands.filter(implausible)
    if bad.height:
        if quality is not None:
            bad = bad.with_columns(
                pl.concat_str([pl.col(c).cast(pl.Int64).cast(pl.Utf8) for c in ("birth_year", "birth_month", "birth_day")],
                              separator="-", ignore_nulls=True).alias("__raw")
            )
            quality.add_rows(bad, "demographics", "birth_date", IMPLAUSIBLE, value_col="__raw")
        logger.warning(f"Prenatal: {bad.height:,} reported birth dates implausible, dropped")

    out = (
        cands.filter(~implausible)
        .with_columns([
            pl.when(pl.col("birth_date") > lim).then(lim).otherwise(pl.col("birth_date")).alias("birth_date"),
            (prec >= 2).alias("__has_month"),
        ])
        .sort(["person_id", "__has_month", "wave"], descending=[False, True, True])
        .unique(subset=["person_id"], keep="first", maintain_order=True)
        .select([
            "person_id",
            "birth_date",
            "birth_date_precision",
            pl.col("wave").alias("birth_date_wave"),
        ])
    )
    logger.info(f"Prenatal: birth dates estimated for {out.height:,} persons")
    return out


def interview_dates(members: pl.DataFrame) -> pl.DataFrame:
    """First reported interview date per household-wave, in source order."""
    return (
        members.filter(pl.col("interview_date").is_not_null())
        .sort(["hhid", "wave", "src_row"])
        .unique(subset=["hhid", "wave"], keep="first", maintain_order=True)
        .select(["hhid", "wave", "interview_date"])
    )


def mother_scores(members: pl.DataFrame, roles: pl.DataFrame) -> pl.DataFrame:
    """The selected mother's K10 per household-wave."""
    mothers = roles.filter(pl.col("is_mother")).select(["hhid", "pid", "wave"])
    return (
        members.join(mothers, on=["hhid", "pid", "wave"], how="inner")
        .select(["hhid", "wave", "k10_score"])
        .sort(["hhid", "wave"])
    )


def prenatal_inputs(
    members: pl.DataFrame,
    roles: pl.DataFrame,
    cfg: PrenatalConfig,
    quality: Optional[DataQualityLog] = None,
) -> Tuple[pl.DataFrame, pl.DataFrame, pl.DataFrame]:
    """(interview dates, birth dates, mother scores) from the member panel."""
    return interview_dates(members), estimate_birth_dates(members, cfg, quality), mother_scores(members, roles)


# ---------------- Resolution ---------------- #

def _timing_candidates(children: pl.DataFrame, interviews: pl.DataFrame, scores: pl.DataFrame,
                       days_per_month: float) -> pl.DataFrame:
    """Every (child-wave, earlier wave) pair with a dated interview and a maternal score."""
    return (
        children.filter(pl.col("c_birth_date").is_not_null())
        .select(["person_id", "hhid", "wave", "c_birth_date"])
        .join(interviews.rename({"wave": "prior_wave", "interview_date": "prior_interview"}), on="hhid", how="inner")
        .filter(pl.col("prior_wave") < pl.col("wave"))
        .join(scores.rename({"wave": "prior_wave", "k10_score": "prior_k10"}), on=["hhid", "prior_wave"], how="inner")
        .filter(pl.col("prior_k10").is_not_null())
        .with_columns(
            elapsed_months(pl.col("c_birth_date"), pl.col("prior_interview"), days_per_month)
            .alias("months_before_birth")
        )
    )


def _closest_in_window(cands: pl.DataFrame, window: float) -> pl.DataFrame:
    """Nearest qualifying earlier wave per child-wave."""
    return (
        cands.filter(in_utero(pl.col("months_before_birth"), window))
        .sort(["person_id", "wave", "months_before_birth"])
        .unique(subset=["person_id", "wave"], keep="first", maintain_order=True)
    )


def resolve_prenatal(
    linked: pl.DataFrame,
    interviews: pl.DataFrame,
    birth_dates: pl.DataFrame,
    scores: pl.DataFrame,
    thresholds: Optional[ThresholdConfig] = None,
    cfg: Optional[PrenatalConfig] = None,
) -> pl.DataFrame:
    """Attach prenatal exposure columns to the linked child panel."""
    thresholds = thresholds or ThresholdConfig()
    cfg = cfg or PrenatalConfig()
    require_columns(linked, ["person_id", "hhid", "wave", "interview_date", "m_pregnant_now", "m_k10_score"],
                    "resolve_prenatal")

    out = linked.join(
        birth_dates.select(["person_id", pl.col("birth_date").alias("c_birth_date"),
                            pl.col("birth_date_precision").alias("c_birth_date_precision")]),
        on="person_id",
        how="left",
    )
    age = elapsed_months(pl.col("interview_date"), pl.col("c_birth_date"), cfg.days_per_month)
    out = out.with_columns([
        pl.when(age >= 0).then(age).otherwise(None).alias("child_age_months"),
        pl.when(pl.col("m_pregnant_now").fill_null(False) & pl.col("m_k10_score").is_not_null())
        .then(pl.col("m_k10_score"))
        .otherwise(None)
        .alias("prenatal_k10_concurrent"),
    ])

    cands = _timing_candidates(out, interviews, scores, cfg.days_per_month)
    main = _closest_in_window(cands, cfg.window_months).select([
        "person_id", "wave",
        pl.col("prior_k10").alias("prenatal_k10_timing"),
        pl.col("prior_wave").alias("prenatal_timing_wave"),
        pl.col("months_before_birth").alias("prenatal_months_before_birth"),
    ])
    out = out.join(main, on=["person_id", "wave"], how="left")

    concurrent, timing = pl.col("prenatal_k10_concurrent"), pl.col("prenatal_k10_timing")
    out = out.with_columns([
        pl.coalesce([concurrent, timing]).alias("prenatal_k10"),
        pl.when(concurrent.is_not_null()).then(pl.lit(CONCURRENT))
        .when(timing.is_not_null()).then(pl.lit(BIRTH_TIMING))
        .otherwise(None)
        .alias("prenatal_source"),
    ]).with_columns([
        (pl.col("prenatal_k10") >= thresholds.k10_prenatal).alias("prenatal_severe"),
        pl.col("prenatal_k10").is_not_null().alias("has_prenatal"),
    ])

    for w in cfg.sensitivity_windows:
        label = window_label(w)
        alt = _closest_in_window(cands, w).select(["person_id", "wave", pl.col("prior_k10").alias(f"__timing_{label}")])
        out = (
            out.join(alt, on=["person_id", "wave"], how="left")
            .with_columns(pl.coalesce([concurrent, pl.col(f"__timing_{label}")]).alias(f"prenatal_k10_{label}"))
            .with_columns(pl.col(f"prenatal_k10_{label}").is_not_null().alias(f"has_prenatal_{label}"))
            .drop(f"__timing_{label}")
        )

    out = out.sort(PANEL_ORDER)
    n_a = out.filter(pl.col("prenatal_source") == CONCURRENT).height
    n_b = out.filter(pl.col("prenatal_source") == BIRTH_TIMING).height
    share = (n_a + n_b) / out.height if out.height else 0.0
    logger.info(
        f"Prenatal: {n_a + n_b:,} of {out.height:,} child rows with prenatal exposure ({share:.1%}; "
        f"concurrent {n_a:,}, birth timing {n_b:,})"
    )
    return out
