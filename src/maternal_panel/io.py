"""
Raw table readers and panel writers.
"""
from __future__ import annotations

import gzip
import io
import logging
from pathlib import Path
from typing import Dict, Optional

import pandas as pd
import polars as pl

from .assemble import ANTHRO_Z, COGNITIVE_Z
from .config import Config, WaveConfig
from .quality import MISSING_TABLE, DataQualityLog

logger = logging.getLogger(__name__)

PANEL_NAME = "analysis_panel"

WITHIN_WAVE_NOTE = "standardized within wave; not comparable in absolute level across waves"
DESCRIPTIONS: Dict[str, str] = {
    "hhid": "household identifier as reported",
    "pid": "member index within household as reported",
    "wave": "survey wave",
    "person_id": "surrogate person key from (hhid, pid); assumes member indices are stable across waves",
    "household_id": "surrogate household key",
    "src_row": "row position in the wave's demographics extract",
    "survey_year": "configured survey year of the wave",
    "interview_date": "household interview date (year only -> 1 July, year+month -> 15th)",
    "hh_size": "members on the roster this wave",
    "n_children": "members aged 17 or younger this wave",
    "exp_total": "total household expenditure",
    "pc_consumption": "exp_total / hh_size",
    "log_pc_consumption": "log(pc_consumption); missing unless strictly positive",
    "ravens_correct": "Raven's items matching the answer key",
    "math_correct": "math items matching the answer key",
    "english_correct": "English items matching the answer key",
    "ds_forward": "highest digit-span forward level with a correct trial",
    "ds_backward": "highest digit-span backward level with a correct trial",
    "cog_composite": "mean of the available cognitive z-scores; " + WITHIN_WAVE_NOTE,
    "female_child": "child is female",
    "child_age_months": "child age at interview from the estimated birth date",
    "m_k10_score": (
        "mother's K10 total (10-50); missing with fewer than the minimum items answered; "
        "also missing when the answered items sum below 10 (8 or 9 items all 'none of the time'), "
        "which drops the least distressed mothers from analysis_sample"
    ),
    "c_birth_date": "child's estimated birth date; partial reports are capped at the reporting interview",
    "m_depression_cat": "mother's K10 band: low 10-19, mild 20-24, moderate 25-29, severe 30-50",
    "m_k10_high": "mother's K10 at or above the main binary threshold",
    "prenatal_k10_concurrent": "mother's K10 measured in the same wave while reporting pregnancy",
    "prenatal_k10_timing": "mother's K10 from the nearest earlier wave interviewed within the window before birth",
    "prenatal_timing_wave": "wave supplying prenatal_k10_timing",
    "prenatal_months_before_birth": "months from that wave's interview to the birth",
    "prenatal_k10": "concurrent value when present, else the birth-timing value",
    "prenatal_source": "concurrent or birth_timing",
    "prenatal_severe": "prenatal_k10 at or above the prenatal threshold",
    "has_prenatal": "prenatal_k10 present",
    "analysis_sample": "mother's K10 present and at least one raw cognitive score present",
}
for _raw, _z in COGNITIVE_Z.items():
    DESCRIPTIONS[_z] = f"z-score of {_raw}; {WITHIN_WAVE_NOTE}"
for _raw, _z in ANTHRO_Z.items():
    _note = (f"approximate z-score of {_raw} by sex among members aged 17 or younger; "
            f"{WITHIN_WAVE_NOTE}; not a WHO growth-reference z-score")
    DESCRIPTIONS[f"c_{_z}"] = _note
    DESCRIPTIONS[f"m_{_z}"] = _note


# ---------------- Readers ---------------- #

def read_table(
    path: Path,
    convert_categoricals: bool = False,
    quality: Optional[DataQualityLog] = None,
    table: str = "",
    wave: Optional[int] = None,
) -> Optional[pl.DataFrame]:
    """Read one raw extract; None (and a missing_table record) when the file is absent.

    CSV columns are all read as strings so label and code encodings survive
    untouched; .dta value labels are applied only when ``convert_categoricals``.
    """
    path = Path(path)
    if not path.exists():
        if quality is not None:
            quality.add(table or path.stem, "*", MISSING_TABLE, wave=wave, value=str(path))
        logger.warning(f"Wave {wave}: {table or 'table'} missing at {path}")
        return None

    name = path.name.lower()
    if name.endswith(".dta"):
        pdf = pd.read_stata(str(path), convert_categoricals=convert_categoricals)
        df = pl.from_pandas(pdf)
    elif name.endswith(".csv.gz"):
        with gzip.open(path, "rb") as f:
            df = pl.read_csv(io.BytesIO(f.read()), infer_schema_length=0)
    elif name.endswith(".csv"):
        df = pl.read_csv(str(path), infer_schema_length=0)
    elif name.endswith(".parquet"):
        df = pl.read_parquet(str(path))
    else:
        raise ValueError(f"Unsupported table format: {path}")

    logger.info(f"Wave {wave}: {table} loaded {df.height:,} rows from {path}")
    return df


def read_wave(wcfg: WaveConfig, cfg: Config, quality: Optional[DataQualityLog] = None) -> Dict[str, Optional[pl.DataFrame]]:
    """Every configured domain extract for one wave."""
    tables: Dict[str, Optional[pl.DataFrame]] = {}
    for name, dcfg in wcfg.domains.items():
        if not dcfg.file:
            if quality is not None:
                quality.add(name, "*", MISSING_TABLE, wave=wcfg.wave)
            tables[name] = None
            continue
        tables[name] = read_table(cfg.raw_dir / dcfg.file, dcfg.convert_categoricals, quality, name, wcfg.wave)
    return tables


# ---------------- Writers ---------------- #

def _export_stata(df: pl.DataFrame, file_path: Path) -> None:
    """Export a Polars DataFrame to Stata .dta format via pandas"""
    # Stata has no boolean type; store flags as 0/1
    df = df.with_columns([pl.col(c).cast(pl.Int8) for c, t in df.schema.items() if t == pl.Boolean])
    df_pandas = df.to_pandas()

    # Dates go out as %td
    date_cols = [c for c, t in df.schema.items() if t == pl.Date]
    for c in date_cols:
        df_pandas[c] = pd.to_datetime(df_pandas[c])
    # Stata variable names are limited to 32 characters
    too_long = [c for c in df_pandas.columns if len(c) > 32]
    if too_long:
        raise ValueError(f"Column names too long for Stata: {too_long}")

    file_path.parent.mkdir(parents=True, exist_ok=True)
    df_pandas.to_stata(
        str(file_path),
        write_index=False,
        version=119,
        convert_dates={c: "td" for c in date_cols},
    )
    logger.info(f"Exported {len(df):,} rows to {file_path}")


def codebook(panel: pl.DataFrame) -> pl.DataFrame:
    """(column, dtype, description) for every panel column."""
    rows = []
    for col, t in panel.schema.items():
        desc = DESCRIPTIONS.get(col)
        if desc is None and col.startswith(("prenatal_k10_w", "has_prenatal_w")):
            desc = "prenatal exposure under an alternative in-utero window of " + col.rsplit("_w", 1)[1] + " months"
        elif desc is None and col.startswith("share_"):
            desc = f"share of household expenditure on {col[len('share_'):]}"
        elif desc is None and col.startswith("m_"):
            desc = f"mother's {col[2:]}"
        elif desc is None and col.startswith("c_"):
            desc = f"child's {col[2:]}"
        rows.append({"column": col, "dtype": str(t), "description": desc or ""})
    return pl.DataFrame(rows, schema={"column": pl.Utf8, "dtype": pl.Utf8, "description": pl.Utf8})


def write_panel(panel: pl.DataFrame, cfg: Config, name: str = PANEL_NAME) -> Dict[str, Path]:
    """Write the analysis panel (gzip CSV, optional parquet and Stata) plus its codebook."""
    out_dir = cfg.processed_dir
    out_dir.mkdir(parents=True, exist_ok=True)
    paths: Dict[str, Path] = {}

    csv_path = cfg.get_output_path("panel_csv", out_dir / f"{name}.csv.gz")
    csv_path.parent.mkdir(parents=True, exist_ok=True)
    # Write in binary mode; Polars write_csv emits bytes
    with gzip.open(csv_path, "wb") as f:
        panel.write_csv(f)
    logger.info(f"Saved {panel.height:,} rows x {panel.width} columns to {csv_path}")
    paths["csv"] = csv_path

    if cfg.write_parquet:
        pq_path = cfg.get_output_path("panel_parquet", out_dir / f"{name}.parquet")
        pq_path.parent.mkdir(parents=True, exist_ok=True)
        panel.write_parquet(str(pq_path))
        logger.info(f"Saved {pq_path}")
        paths["parquet"] = pq_path

    if cfg.write_stata:
        dta_path = cfg.get_output_path("panel_dta", out_dir / f"{name}.dta")
        _export_stata(panel, dta_path)
        paths["dta"] = dta_path

    cb_path = cfg.get_output_path("codebook", out_dir / f"{name}_codebook.csv")
    cb_path.parent.mkdir(parents=True, exist_ok=True)
    codebook(panel).write_csv(str(cb_path))
    logger.info(f"Saved codebook to {cb_path}")
    paths["codebook"] = cb_path
    return paths
