"""
Data-quality warning collector.

Every absorbed data problem (unrecognized label, implausible value, absent
table or column, duplicate key, ...) becomes one structured record here
instead of an exception. Records are aggregated into one log line per
(table, field, reason) and written out as ``data_quality.csv`` at the end of
a run.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import polars as pl

logger = logging.getLogger(__name__)

UNRECOGNIZED = "unrecognized_value"
IMPLAUSIBLE = "implausible_value"
MISSING_TABLE = "missing_table"
MISSING_COLUMN = "missing_column"
DUPLICATE_KEY = "duplicate_key"
PARTIAL_INVENTORY = "partial_inventory"
AGE_PROGRESSION = "age_progression_mismatch"

REASONS = (
    UNRECOGNIZED,
    IMPLAUSIBLE,
    MISSING_TABLE,
    MISSING_COLUMN,
    DUPLICATE_KEY,
    PARTIAL_INVENTORY,
    AGE_PROGRESSION,
)

SCHEMA = {
    "table": pl.Utf8,
    "wave": pl.Int64,
    "hhid": pl.Utf8,
    "pid": pl.Utf8,
    "field": pl.Utf8,
    "reason": pl.Utf8,
    "value": pl.Utf8,
}


class DataQualityLog:
    """Append-only list of (table, wave, hhid, pid, field, reason, value) records."""

    def __init__(self) -> None:
        self._records: List[Dict[str, Any]] = []

    def __len__(self) -> int:
        return len(self._records)

    def add(
        self,
        table: str,
        field: str,
        reason: str,
        wave: Optional[int] = None,
        hhid: Any = None,
        pid: Any = None,
        value: Any = None,
    ) -> None:
        if reason not in REASONS:
            raise ValueError(f"Unknown data-quality reason: {reason}")
        self._records.append({
            "table": table,
            "wave": wave,
            "hhid": None if hhid is None else str(hhid),
            "pid": None if pid is None else str(pid),
            "field": field,
            "reason": reason,
            "value": None if value is None else str(value),
        })

    def add_rows(
        self,
        rows: pl.DataFrame,
        table: str,
        field: str,
        reason: str,
        wave: Optional[int] = None,
        value_col: Optional[str] = None,
    ) -> int:
        """Record one warning per row of ``rows`` (which must carry hhid/pid where known)."""
        if rows.height == 0:
            return 0
        cols = rows.columns
        for r in rows.iter_rows(named=True):
            self.add(
                table,
                field,
                reason,
                wave=r.get("wave", wave) if "wave" in cols else wave,
                hhid=r.get("hhid"),
                pid=r.get("pid"),
                value=r.get(value_col) if value_col else None,
            )
        logger.warning(
            f"Quality: {table} w{wave if wave is not None else '*'} {field}: "
            f"{rows.height:,} rows {reason.replace('_', ' ')}"
        )
        return rows.height

    def to_frame(self) -> pl.DataFrame:
        if not self._records:
            return pl.DataFrame(schema=SCHEMA)
        return pl.DataFrame(self._records, schema=SCHEMA)

    def summary(self) -> pl.DataFrame:
        """Counts per (table, wave, field, reason), largest first."""
        return (
            self.to_frame()
            .group_by(["table", "wave", "field", "reason"])
            .agg(pl.len().alias("n"))
            .sort(["n", "table", "field"], descending=[True, False, False])
        )

    def count(self, reason: Optional[str] = None, table: Optional[str] = None, field: Optional[str] = None) -> int:
        return sum(
            1 for r in self._records
            if (reason is None or r["reason"] == reason)
            and (table is None or r["table"] == table)
            and (field is None or r["field"] == field)
        )

    def write(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        self.to_frame().write_csv(str(path))
        logger.info(f"Quality: {len(self):,} data-quality records saved to {path}")
        return path


class PipelineStateError(RuntimeError):
    """A stage was called out of order or with a frame that breaks its input contract."""


def require_columns(df: Optional[pl.DataFrame], cols: List[str], stage: str) -> pl.DataFrame:
    if df is None:
        raise PipelineStateError(f"{stage}: required input frame is missing")
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise PipelineStateError(f"{stage}: input frame lacks required columns {missing}")
    return df
