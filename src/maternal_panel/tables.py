"""
Per-wave table builders.

One builder per survey module. Each takes the raw extract for one wave plus
that wave's ``DomainConfig`` (which raw column plays which canonical role,
item lists, answer keys, bounds) and returns a canonical polars frame keyed by
(hhid, pid) -- expenditure is keyed by hhid only.

Raw keys are cast to trimmed strings. Duplicate keys keep the first row in
source order (``src_row``); the rest are dropped and reported.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import polars as pl

from .config import Config, DomainConfig, ThresholdConfig, WaveConfig
from .normalize import (
    Encoding,
    key_expr,
    normalize_column,
    numeric_column,
    scalar_key,
)
from .quality import (
    DUPLICATE_KEY,
    IMPLAUSIBLE,
    MISSING_COLUMN,
    MISSING_TABLE,
    PARTIAL_INVENTORY,
    UNRECOGNIZED,
    DataQualityLog,
)

logger = logging.getLogger(__name__)

KEYS = ["hhid", "pid"]
HH_KEYS = ["hhid"]

# Tie-break for duplicate keys: earliest row in the raw extract wins.
KEEP_FIRST_IN_SOURCE_ORDER = "src_row"

# K10 severity bands, inclusive on both ends.
K10_CUTPOINTS: Tuple[Tuple[int, int, str], ...] = (
    (10, 19, "low"),
    (20, 24, "mild"),
    (25, 29, "moderate"),
    (30, 50, "severe"),
)
K10_ITEMS = 10

EXPENDITURE_CATEGORIES = ("food", "clothing", "fuel")

DEFAULT_BOUNDS: Dict[str, Tuple[Optional[float], Optional[float]]] = {
    "age": (0, 120),
    "birth_month": (1, 12),
    "birth_day": (1, 31),
    "int_month": (1, 12),
    "int_day": (1, 31),
    "height": (40, 220),    # cm
    "weight": (1, 200),     # kg
    "muac": (5, 50),        # cm
    "days_sick": (0, 30),
    "hours": (0, 24),
    "minutes": (0, 24 * 60),
    "amount": (0, None),
}

# Columns each builder guarantees (besides keys); used to null-fill absent tables.
DOMAIN_COLUMNS: Dict[str, Dict[str, pl.DataType]] = {
    "demographics": {
        "src_row": pl.Int64, "age": pl.Float64, "sex": pl.Utf8, "relation": pl.Utf8,
        "pregnant_now": pl.Boolean, "in_school": pl.Boolean, "ea_id": pl.Utf8, "region": pl.Utf8,
        "birth_year": pl.Float64, "birth_month": pl.Float64, "birth_day": pl.Float64,
        "interview_date": pl.Date,
    },
    "depression": {
        "k10_items_answered": pl.Int64, "k10_score": pl.Int64,
        "depression_cat": pl.Utf8, "k10_high": pl.Boolean,
    },
    "cognitive": {
        "ravens_correct": pl.Int64, "math_correct": pl.Int64, "english_correct": pl.Int64,
        "ds_forward": pl.Int64, "ds_backward": pl.Int64,
    },
    "anthropometry": {"height": pl.Float64, "weight": pl.Float64, "muac": pl.Float64},
    "time_use": {"tu_child_time_hours": pl.Float64, "childcare_participation": pl.Boolean},
    "expenditure": {
        "exp_total": pl.Float64,
        **{f"exp_{c}": pl.Float64 for c in (*EXPENDITURE_CATEGORIES, "other")},
        **{f"share_{c}": pl.Float64 for c in (*EXPENDITURE_CATEGORIES, "other")},
    },
    "health": {
        "ill_recent": pl.Boolean, "days_sick": pl.Float64,
        "sought_care": pl.Boolean, "immunization_rate": pl.Float64,
    },
    "insurance": {"insured": pl.Boolean},
}

COGNITIVE_RAW = list(DOMAIN_COLUMNS["cognitive"])


# ---------------- Shared helpers ---------------- #

def key_string(col: str) -> pl.Expr:
    """Identifier column as trimmed string, '12.0' -> '12'."""
    k = pl.col(col).cast(pl.Utf8).str.strip_chars().str.replace(r"^(-?\d+)\.0+$", "${1}")
    return pl.when(k == "").then(None).otherwise(k)


def _bounds(dcfg: DomainConfig, name: str, default_key: Optional[str] = None):
    custom = (dcfg.options.get("bounds", {}) or {}).get(name)
    if custom is not None:
        lo, hi = custom
        return (lo, hi)
    return DEFAULT_BOUNDS.get(default_key or name)


def _encoding(cfg: Config, dcfg: DomainConfig, fld: str, default: str) -> Encoding:
    name = (dcfg.options.get("encodings", {}) or {}).get(fld, default)
    return cfg.encoding(name)


def _typed_nulls(df: pl.DataFrame, cols: Dict[str, pl.DataType]) -> pl.DataFrame:
    return df.with_columns([pl.lit(None, dtype=t).alias(c) for c, t in cols.items() if c not in df.columns])


def dedupe_first(
    df: pl.DataFrame,
    keys: List[str],
    table: str,
    wave: Optional[int],
    quality: Optional[DataQualityLog],
) -> pl.DataFrame:
    """Keep the first row per key in source order; report the rest."""
    df = df.sort(KEEP_FIRST_IN_SOURCE_ORDER)
    first = pl.struct(keys).is_first_distinct()
    dups = df.filter(~first)
    if dups.height:
        if quality is not None:
            quality.add_rows(dups, table, "+".join(keys), DUPLICATE_KEY, wave=wave, value_col=KEEP_FIRST_IN_SOURCE_ORDER)
        logger.info(f"Wave {wave}: {table} {dups.height:,} duplicate keys dropped")
    return df.filter(first)


def prepare_keys(
    df: pl.DataFrame,
    dcfg: DomainConfig,
    table: str,
    wave: Optional[int],
    quality: Optional[DataQualityLog],
    keys: List[str] = KEYS,
) -> Optional[pl.DataFrame]:
    """Rename raw key columns to canonical names, tag source order, drop bad and duplicate keys.

    Returns None (the whole table unusable for this wave) when a key column is absent.
    """
    raw_keys = {k: dcfg.column(k) for k in keys}
    absent = [raw for raw in raw_keys.values() if raw not in df.columns]
    if absent:
        if quality is not None:
            quality.add(table, "+".join(keys), MISSING_COLUMN, wave=wave, value=",".join(absent))
        logger.warning(f"Wave {wave}: {table} lacks key columns {absent}; table dropped")
        return None

    out = df.with_row_index(KEEP_FIRST_IN_SOURCE_ORDER).with_columns(
        pl.col(KEEP_FIRST_IN_SOURCE_ORDER).cast(pl.Int64)
    )
    out = out.with_columns([key_string(raw).alias(f"__key_{k}") for k, raw in raw_keys.items()])
    out = out.drop(list(set(raw_keys.values()) | set(keys)), strict=False)
    out = out.rename({f"__key_{k}": k for k in keys})

    null_key = pl.any_horizontal([pl.col(k).is_null() for k in keys])
    bad = out.filter(null_key)
    if bad.height:
        if quality is not None:
            quality.add_rows(bad, table, "+".join(keys), UNRECOGNIZED, wave=wave)
        out = out.filter(~null_key)
    return dedupe_first(out, keys, table, wave, quality)


def _whole(e: pl.Expr) -> pl.Expr:
    return e == e.floor()


def compose_date(year: pl.Expr, month: pl.Expr, day: pl.Expr) -> pl.Expr:
    """Date from numeric components; year-only -> 1 July, year+month -> the 15th; invalid -> null."""
    year, month, day = (e.cast(pl.Float64) for e in (year, month, day))
    mm =pl.when(month.is_null()).then(pl.lit(7.0)).otherwise(month)
    dd = pl.when(month.is_null()).then(pl.lit(1.0)).when(day.is_null()).then(pl.lit(15.0)).otherwise(day)
    ok = (
        year.is_not_null() & _whole(year) & (year >= 1) & (year <= 9999)
        & _whole(mm) & (mm >= 1) & (mm <= 12)
        & _whole(dd) & (dd >= 1)
    ).fill_null(False)
    y, m, d = (pl.when(ok).then(e).otherwise(None).cast(pl.Int32) for e in (year, mm, dd))
    last = pl.date(y, m, pl.lit(1, dtype=pl.Int32)).dt.month_end().dt.day().cast(pl.Int32)
    return pl.when(d <= last).then(pl.date(y, m, pl.min_horizontal(d, last))).otherwise(None)


def date_precision(year: pl.Expr, month: pl.Expr, day: pl.Expr) -> pl.Expr:
    """3 = full date, 2 = year+month, 1 = year only, null = no year."""
    return (
        pl.when(year.is_null()).then(None)
        .when(month.is_null()).then(pl.lit(1))
        .when(day.is_null()).then(pl.lit(2))
        .otherwise(pl.lit(3))
        .cast(pl.Int64)
    )


def _finish(df: pl.DataFrame, keys: List[str], domain: str, extra: Sequence[str] = ()) -> pl.DataFrame:
    cols = DOMAIN_COLUMNS[domain]
    out = _typed_nulls(df, cols)
    keep = keys + [c for c in cols if c not in keys] + [c for c in extra if c not in cols]
    return out.select(keep).sort(keys)


# ---------------- Demographics ---------------- #

def build_demographics(df: pl.DataFrame, dcfg: DomainConfig, cfg: Config, wave: int,
                       quality: Optional[DataQualityLog] = None) -> Optional[pl.DataFrame]:
    table = "demographics"
    out = prepare_keys(df, dcfg, table, wave, quality)
    if out is None:
        return None

    out = numeric_column(out, dcfg.column("age"), "age", _bounds(dcfg, "age"), quality, table, wave)
    out = normalize_column(out, dcfg.column("sex"), _encoding(cfg, dcfg, "sex", "sex"), "sex", quality, table, wave)
    out = normalize_column(out, dcfg.column("relation"), _encoding(cfg, dcfg, "relation", "relationship"),
                           "relation", quality, table, wave)
    for fld in ("pregnant_now", "in_school"):
        if dcfg.column(fld) in out.columns or fld in dcfg.columns:
            out = normalize_column(out, dcfg.column(fld), _encoding(cfg, dcfg, fld, "yes_no"), fld, quality, table, wave)
    for fld in ("ea_id", "region"):
        raw = dcfg.column(fld)
        if raw in out.columns:
            out = out.with_columns(key_string(raw).alias(fld))

    for fld in ("birth_year", "birth_month", "birth_day", "int_year", "int_month", "int_day"):
        raw = dcfg.column(fld)
        if raw in out.columns or fld in dcfg.columns:
            out = numeric_column(out, raw, fld, _bounds(dcfg, fld), quality, table, wave)
        else:
            out = out.with_columns(pl.lit(None, dtype=pl.Float64).alias(fld))

    out = out.with_columns(
        compose_date(pl.col("int_year"), pl.col("int_month"), pl.col("int_day")).alias("interview_date")
    )
    out = _finish(out, KEYS, "demographics")
    logger.info(f"Wave {wave}: demographics built {out.height:,} members in {out['hhid'].n_unique():,} households")
    return out


# ---------------- Depression (K10) ---------------- #

def k10_severity_expr(col: str) -> pl.Expr:
    expr = pl.when(pl.col(col).is_null()).then(pl.lit(None, dtype=pl.Utf8))
    for lo, hi, label in K10_CUTPOINTS:
        expr = expr.when((pl.col(col) >= lo) & (pl.col(col) <= hi)).then(pl.lit(label))
    return expr.otherwise(None)


def build_depression(df: pl.DataFrame, dcfg: DomainConfig, cfg: Config, wave: int,
                     quality: Optional[DataQualityLog] = None,
                     thresholds: Optional[ThresholdConfig] = None) -> Optional[pl.DataFrame]:
    table = "depression"
    thresholds = thresholds or cfg.thresholds
    out = prepare_keys(df, dcfg, table, wave, quality)
    if out is None:
        return None

    items = dcfg.options.get("items") or [f"k10_{i}" for i in range(1, K10_ITEMS + 1)]
    enc = _encoding(cfg, dcfg, "items", "frequency_5")
    item_cols = []
    for i, raw in enumerate(items, start=1):
        col = f"__k10_{i}"
        out = normalize_column(out, raw, enc, col, quality, table, wave)
        item_cols.append(col)

    answered = pl.sum_horizontal([pl.col(c).is_not_null().cast(pl.Int64) for c in item_cols])
    total = pl.sum_horizontal([pl.col(c).fill_null(0) for c in item_cols]).cast(pl.Int64)
    out = out.with_columns([
        answered.alias("k10_items_answered"),
        pl.when(answered >= thresholds.k10_min_items).then(total).otherwise(None).alias("k10_score"),
    ])

    if quality is not None:
        partial = out.filter((pl.col("k10_items_answered") > 0) & (pl.col("k10_items_answered") < thresholds.k10_min_items))
        if partial.height:
            quality.add_rows(partial, table, "k10_score", PARTIAL_INVENTORY, wave=wave, value_col="k10_items_answered")

    lo, hi = K10_CUTPOINTS[0][0], K10_CUTPOINTS[-1][1]
    outside = pl.col("k10_score").is_not_null() & ((pl.col("k10_score") < lo) | (pl.col("k10_score") > hi))
    if quality is not None:
        bad = out.filter(outside)
        if bad.height:
            quality.add_rows(bad, table, "k10_score", IMPLAUSIBLE, wave=wave, value_col="k10_score")
    out = out.with_columns(pl.when(outside).then(None).otherwise(pl.col("k10_score")).alias("k10_score"))

    out = out.with_columns([
        k10_severity_expr("k10_score").alias("depression_cat"),
        (pl.col("k10_score") >= thresholds.k10_binary).alias("k10_high"),
    ])
    out = _finish(out, KEYS, "depression")
    n_scored = out.filter(pl.col("k10_score").is_not_null()).height
    logger.info(f"Wave {wave}: depression built {out.height:,} respondents, {n_scored:,} with a K10 score")
    return out


# ---------------- Cognitive tests ---------------- #

def _present_columns(df: pl.DataFrame, cols: Sequence[str], table: str, fld: str, wave: int,
                     quality: Optional[DataQualityLog]) -> List[str]:
    have = [c for c in cols if c in df.columns]
    missing = [c for c in cols if c not in df.columns]
    if missing and quality is not None:
        quality.add(table, fld, MISSING_COLUMN, wave=wave, value=",".join(missing))
    return have


def answer_key_score(df: pl.DataFrame, items: Sequence[str], key: Sequence[Any]) -> pl.Expr:
    """Count of items matching the answer key (case-insensitive); null when no item was answered."""
    pairs = [(item, scalar_key(k)) for item, k in zip(items, key) if item in df.columns]
    if not pairs:
        return pl.lit(None, dtype=pl.Int64)
    correct = pl.sum_horizontal([(key_expr(item) == pl.lit(k)).fill_null(False).cast(pl.Int64) for item, k in pairs])
    answered = pl.sum_horizontal([key_expr(item).is_not_null().cast(pl.Int64) for item, _ in pairs])
    return pl.when(answered > 0).then(correct).otherwise(None).cast(pl.Int64)


def digit_span_level(levels: Sequence[Sequence[str]], base_level: int) -> pl.Expr:
    """Highest level with at least one correct trial; 0 if administered with none correct.

    ``levels[i]`` holds the (already boolean) trial columns for level ``base_level + i``.
    """
    if not levels:
        return pl.lit(None, dtype=pl.Int64)
    passed = [
        pl.when(pl.any_horizontal([pl.col(c) for c in trials]).fill_null(False)).then(pl.lit(base_level + i))
        for i, trials in enumerate(levels) if trials
    ]
    administered = pl.any_horizontal([pl.col(c).is_not_null() for trials in levels for c in trials])
    best = pl.max_horizontal(passed) if passed else pl.lit(None, dtype=pl.Int64)
    return pl.when(administered).then(pl.coalesce([best, pl.lit(0)])).otherwise(None).cast(pl.Int64)


def build_cognitive(df: pl.DataFrame, dcfg: DomainConfig, cfg: Config, wave: int,
                    quality: Optional[DataQualityLog] = None) -> Optional[pl.DataFrame]:
    table = "cognitive"
    out = prepare_keys(df, dcfg, table, wave, quality)
    if out is None:
        return None

    exprs = []
    for test in ("ravens", "math", "english"):
        entry = dcfg.options.get(test)
        if not entry:
            logger.info(f"Wave {wave}: {test} not fielded")
            continue
        items, key = list(entry["items"]), list(entry["key"])
        _present_columns(out, items, table, f"{test}_correct", wave, quality)
        exprs.append(answer_key_score(out, items, key).alias(f"{test}_correct"))

    span_cfg = dcfg.options.get("digit_span", {}) or {}
    enc = _encoding(cfg, dcfg, "digit_span", "pass_fail")
    for direction in ("forward", "backward"):
        entry = span_cfg.get(direction)
        if not entry:
            continue
        base = int(entry.get("base_level", 1))
        levels: List[List[str]] = []
        for i, trials in enumerate(entry.get("levels", []) or []):
            have = _present_columns(out, trials, table, f"ds_{direction}", wave, quality)
            cols = []
            for j, raw in enumerate(have):
                col = f"__ds_{direction}_{i}_{j}"
                out = normalize_column(out, raw, enc, col, quality, table, wave)
                cols.append(col)
            levels.append(cols)
        exprs.append(digit_span_level(levels, base).alias(f"ds_{direction}"))

    if exprs:
        out = out.with_columns(exprs)
    out = _finish(out, KEYS, "cognitive")
    logger.info(f"Wave {wave}: cognitive built {out.height:,} test takers")
    return out


# ---------------- Anthropometry ---------------- #

def build_anthropometry(df: pl.DataFrame, dcfg: DomainConfig, cfg: Config, wave: int,
                        quality: Optional[DataQualityLog] = None) -> Optional[pl.DataFrame]:
    table = "anthropometry"
    out = prepare_keys(df, dcfg, table, wave, quality)
    if out is None:
        return None
    for fld in ("height", "weight", "muac"):
        out = numeric_column(out, dcfg.column(fld), fld, _bounds(dcfg, fld), quality, table, wave)
    out = _finish(out, KEYS, "anthropometry")
    logger.info(f"Wave {wave}: anthropometry built {out.height:,} measurements")
    return out


# ---------------- Time use ---------------- #

DEFAULT_ACTIVITIES = {
    "reading": {"hours": "reading_hours", "minutes": "reading_minutes"},
    "homework": {"hours": "homework_hours", "minutes": "homework_minutes"},
}


def build_time_use(df: pl.DataFrame, dcfg: DomainConfig, cfg: Config, wave: int,
                   quality: Optional[DataQualityLog] = None) -> Optional[pl.DataFrame]:
    table = "time_use"
    out = prepare_keys(df, dcfg, table, wave, quality)
    if out is None:
        return None

    activities = dcfg.options.get("activities") or DEFAULT_ACTIVITIES
    activity_cols = []
    for name, entry in activities.items():
        h, m = f"__{name}_h", f"__{name}_m"
        out = numeric_column(out, entry.get("hours"), h, _bounds(dcfg, "hours"), quality, table, wave)
        if entry.get("minutes"):
            out = numeric_column(out, entry["minutes"], m, _bounds(dcfg, "minutes"), quality, table, wave)
        else:
            out = out.with_columns(pl.lit(None, dtype=pl.Float64).alias(m))
        col = f"tu_{name}_hours"
        out = out.with_columns(
            pl.when(pl.col(h).is_null() & pl.col(m).is_null()).then(None)
            .otherwise(pl.col(h).fill_null(0.0) + pl.col(m).fill_null(0.0) / 60.0)
            .alias(col)
        )
        activity_cols.append(col)

    any_reported = pl.any_horizontal([pl.col(c).is_not_null() for c in activity_cols])
    out = out.with_columns(
        pl.when(any_reported)
        .then(pl.sum_horizontal([pl.col(c).fill_null(0.0) for c in activity_cols]))
        .otherwise(None)
        .alias("tu_child_time_hours")
    )
    if dcfg.column("childcare") in out.columns or "childcare" in dcfg.columns:
        out = normalize_column(out, dcfg.column("childcare"), _encoding(cfg, dcfg, "childcare", "yes_no"),
                               "childcare_participation", quality, table, wave)

    out = _finish(out, KEYS, "time_use", extra=activity_cols)
    logger.info(f"Wave {wave}: time use built {out.height:,} diaries over {len(activity_cols)} activities")
    return out


# ---------------- Expenditure ---------------- #

def build_expenditure(df: pl.DataFrame, dcfg: DomainConfig, cfg: Config, wave: int,
                      quality: Optional[DataQualityLog] = None) -> Optional[pl.DataFrame]:
    """Aggregate item-level spending rows to one row per household."""
    table = "expenditure"
    hhid_raw = dcfg.column("hhid")
    if hhid_raw not in df.columns:
        if quality is not None:
            quality.add(table, "hhid", MISSING_COLUMN, wave=wave, value=hhid_raw)
        return None
    out = df.with_row_index(KEEP_FIRST_IN_SOURCE_ORDER).with_columns(key_string(hhid_raw).alias("__hhid"))
    out = out.drop([hhid_raw], strict=False).rename({"__hhid": "hhid"}).filter(pl.col("hhid").is_not_null())

    out = numeric_column(out, dcfg.column("amount"), "__amount", _bounds(dcfg, "amount"), quality, table, wave)

    mapping: Dict[str, str] = {}
    for category, values in (dcfg.options.get("categories", {}) or {}).items():
        if category not in EXPENDITURE_CATEGORIES:
            logger.warning(f"Wave {wave}: expenditure category {category!r} folded into 'other'")
            continue
        for v in values or []:
            mapping[scalar_key(v)] = category
    item_raw = dcfg.column("item")
    if item_raw in out.columns and mapping:
        out = out.with_columns(
            key_expr(item_raw)
            .replace_strict(mapping, default="other", return_dtype=pl.Utf8)
            .fill_null("other")
            .alias("__cat")
        )
    elif item_raw in out.columns:
        out = out.with_columns(pl.lit("other").alias("__cat"))
    else:
        if quality is not None:
            quality.add(table, "item", MISSING_COLUMN, wave=wave, value=item_raw)
        out = out.with_columns(pl.lit("other").alias("__cat"))

    def _cat_sum(cat: str) -> pl.Expr:
        return pl.when(pl.col("__cat") == cat).then(pl.col("__amount")).otherwise(0.0).sum()

    categories = (*EXPENDITURE_CATEGORIES, "other")
    amount_cols = ["exp_total", *[f"exp_{c}" for c in categories]]
    agg = (
        out.group_by("hhid")
        .agg([
            pl.col("__amount").count().alias("__n"),
            pl.col("__amount").sum().alias("exp_total"),
            *[_cat_sum(c).alias(f"exp_{c}") for c in categories],
        ])
        .with_columns([
            pl.when(pl.col("__n") > 0).then(pl.col(a)).otherwise(None).alias(a)
            for a in amount_cols
        ])
        .with_columns([
            pl.when(pl.col("exp_total") > 0).then(pl.col(f"exp_{c}") / pl.col("exp_total")).otherwise(None)
            .alias(f"share_{c}")
            for c in categories
        ])
    )
    agg = _finish(agg, HH_KEYS, "expenditure")
    logger.info(f"Wave {wave}: expenditure aggregated {out.height:,} item rows to {agg.height:,} households")
    return agg


# ---------------- Health and insurance ---------------- #

def build_health(df: pl.DataFrame, dcfg: DomainConfig, cfg: Config, wave: int,
                 quality: Optional[DataQualityLog] = None) -> Optional[pl.DataFrame]:
    table = "health"
    out = prepare_keys(df, dcfg, table, wave, quality)
    if out is None:
        return None
    yes_no = _encoding(cfg, dcfg, "ill", "yes_no")
    out = normalize_column(out, dcfg.column("ill"), yes_no, "ill_recent", quality, table, wave)
    out = numeric_column(out, dcfg.column("days_sick"), "days_sick", _bounds(dcfg, "days_sick"), quality, table, wave)
    out = normalize_column(out, dcfg.column("sought_care"), _encoding(cfg, dcfg, "sought_care", "yes_no"),
                           "sought_care", quality, table, wave)

    vaccines = dcfg.options.get("vaccines") or []
    have = _present_columns(out, vaccines, table, "immunization_rate", wave, quality)
    vac_enc = _encoding(cfg, dcfg, "vaccines", "yes_no")
    vac_cols = []
    for i, raw in enumerate(have):
        col = f"__vac_{i}"
        out = normalize_column(out, raw, vac_enc, col, quality, table, wave)
        vac_cols.append(col)
    if vac_cols:
        out = out.with_columns(pl.mean_horizontal([pl.col(c).cast(pl.Float64) for c in vac_cols]).alias("immunization_rate"))

    out = _finish(out, KEYS, "health")
    logger.info(f"Wave {wave}: health built {out.height:,} members")
    return out


def build_insurance(df: pl.DataFrame, dcfg: DomainConfig, cfg: Config, wave: int,
                    quality: Optional[DataQualityLog] = None) -> Optional[pl.DataFrame]:
    table = "insurance"
    out = prepare_keys(df, dcfg, table, wave, quality)
    if out is None:
        return None
    out = normalize_column(out, dcfg.column("insured"), _encoding(cfg, dcfg, "insured", "yes_no"),
                           "insured", quality, table, wave)
    out = _finish(out, KEYS, "insurance")
    logger.info(f"Wave {wave}: insurance built {out.height:,} members")
    return out


BUILDERS: Dict[str, Callable[..., Optional[pl.DataFrame]]] = {
    "demographics": build_demographics,
    "depression": build_depression,
    "cognitive": build_cognitive,
    "anthropometry": build_anthropometry,
    "time_use": build_time_use,
    "expenditure": build_expenditure,
    "health": build_health,
    "insurance": build_insurance,
}


def build_wave_tables(
    raw_tables: Dict[str, Optional[pl.DataFrame]],
    wcfg: WaveConfig,
    cfg: Config,
    quality: Optional[DataQualityLog] = None,
) -> Dict[str, Optional[pl.DataFrame]]:
    """Run every domain builder for one wave; an absent raw table yields None for that domain."""
    built: Dict[str, Optional[pl.DataFrame]] = {}
    for domain, builder in BUILDERS.items():
        raw = raw_tables.get(domain)
        if raw is None:
            # read_table already reports files it could not find
            if domain in wcfg.domains and domain not in raw_tables and quality is not None:
                quality.add(domain, "*", MISSING_TABLE, wave=wcfg.wave)
            built[domain] = None
            continue
        built[domain] = builder(raw, wcfg.domain(domain), cfg, wcfg.wave, quality)
    return built
