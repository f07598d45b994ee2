"""
Field normalization: raw survey values -> canonical typed values.

A raw cell is one of three things, modelled as a small tagged variant:

    Label("Most of the time")   free-text category label
    Code(4)                     numeric code from a value-label table
    MISSING                     absent / blank / NaN

Each categorical scale is a declarative ``Encoding`` (label table + code
table). Every field in every wave is normalized through the same two entry
points: ``normalize`` for a single value, ``normalize_column`` for a polars
column. Unknown labels and codes come back as missing, never as an error.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import numpy as np
import polars as pl

from .quality import DataQualityLog, IMPLAUSIBLE, MISSING_COLUMN, UNRECOGNIZED

logger = logging.getLogger(__name__)

_INT_RE = re.compile(r"^-?\d+(?:\.0+)?$")


# ---------------- Raw value variant ---------------- #

@dataclass(frozen=True)
class Label:
    text: str


@dataclass(frozen=True)
class Code:
    value: int


class _Missing:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()

RawValue = Union[Label, Code, _Missing]


def label_key(text: str) -> str:
    """Case/whitespace-insensitive comparison key for a label."""
    return " ".join(str(text).lower().split())


def scalar_key(x: Any) -> str:
    """Python-side twin of ``key_expr``: the key a raw cell holding ``x`` would get."""
    return re.sub(r"^(-?\d+)\.0+$", r"\1", label_key(x))


def raw_value(x: Any) -> RawValue:
    """Classify an untyped cell into Label / Code / MISSING."""
    if isinstance(x, (Label, Code, _Missing)):
        return x
    if x is None:
        return MISSING
    if isinstance(x, bool):
        return Code(int(x))
    if isinstance(x, (int, np.integer)):
        return Code(int(x))
    if isinstance(x, (float, np.floating)):
        if math.isnan(x):
            return MISSING
        if float(x).is_integer():
            return Code(int(x))
        return Label(repr(float(x)))
    text = str(x).strip()
    if not text:
        return MISSING
    if _INT_RE.match(text):
        return Code(int(float(text)))
    return Label(text)


# ---------------- Encodings ---------------- #

BOOLEAN = "boolean"
ORDINAL = "ordinal"
CATEGORY = "category"

_KIND_DTYPES = {
    BOOLEAN: pl.Boolean,
    ORDINAL: pl.Int64,
    CATEGORY: pl.Utf8,
}


@dataclass(frozen=True)
class Encoding:
    """One categorical scale: label table and code table onto canonical values."""
    name: str
    kind: str
    labels: Mapping[str, Any] = field(default_factory=dict)
    codes: Mapping[int, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.kind not in _KIND_DTYPES:
            raise ValueError(f"Encoding {self.name}: unknown kind {self.kind!r}")
        object.__setattr__(self, "labels", {label_key(k): v for k, v in self.labels.items()})
        object.__setattr__(self, "codes", {int(k): v for k, v in self.codes.items()})

    @property
    def dtype(self) -> pl.DataType:
        return _KIND_DTYPES[self.kind]

    @property
    def lookup(self) -> Dict[str, Any]:
        """String-keyed table used for column mapping (codes rendered as ints)."""
        table = {str(k): v for k, v in self.codes.items()}
        table.update(self.labels)
        return table

    def resolve(self, raw: RawValue) -> Tuple[Any, bool]:
        """Return (value, recognized). Missing input is (None, True)."""
        if isinstance(raw, _Missing):
            return None, True
        if isinstance(raw, Code):
            if raw.value in self.codes:
                return self.codes[raw.value], True
            return None, False
        key = label_key(raw.text)
        if key in self.labels:
            return self.labels[key], True
        return None, False

    def extended(self, labels: Optional[Mapping[str, Any]] = None, codes: Optional[Mapping[int, Any]] = None) -> "Encoding":
        return Encoding(
            name=self.name,
            kind=self.kind,
            labels={**self.labels, **(labels or {})},
            codes={**self.codes, **(codes or {})},
        )


YES_NO = Encoding(
    "yes_no", BOOLEAN,
    labels={"yes": True, "no": False, "y": True, "n": False, "true": True, "false": False},
    codes={1: True, 0: False, 2: False},
)

FREQUENCY_5 = Encoding(
    "frequency_5", ORDINAL,
    labels={
        "None of the time": 1,
        "A little of the time": 2,
        "Some of the time": 3,
        "Most of the time": 4,
        "All of the time": 5,
    },
    codes={1: 1, 2: 2, 3: 3, 4: 4, 5: 5},
)

PASS_FAIL = Encoding(
    "pass_fail", BOOLEAN,
    labels={"correct": True, "incorrect": False, "pass": True, "fail": False,
            "passed": True, "failed": False, "right": True, "wrong": False},
    codes={1: True, 0: False},
)

SEX = Encoding(
    "sex", CATEGORY,
    labels={"male": "male", "female": "female", "m": "male", "f": "female", "man": "male", "woman": "female"},
    codes={1: "male", 2: "female"},
)

RELATIONSHIP = Encoding(
    "relationship", CATEGORY,
    labels={
        "head": "head", "household head": "head", "head of household": "head",
        "spouse": "spouse", "wife": "spouse", "husband": "spouse", "wife/husband": "spouse", "partner": "spouse",
        "child": "child", "son": "child", "daughter": "child", "son/daughter": "child",
        "stepchild": "stepchild", "step child": "stepchild", "stepson/stepdaughter": "stepchild",
        "adopted child": "adopted_child", "foster child": "adopted_child",
        "grandchild": "grandchild", "grandson/granddaughter": "grandchild",
        "parent": "parent", "father/mother": "parent",
        "parent-in-law": "parent_in_law", "parent in law": "parent_in_law",
        "father/mother-in-law": "parent_in_law", "mother-in-law": "parent_in_law",
        "sibling": "sibling", "brother/sister": "sibling",
        "other relative": "other_relative",
        "non-relative": "non_relative", "not related": "non_relative", "servant": "non_relative",
    },
    codes={
        1: "head", 2: "spouse", 3: "child", 4: "stepchild", 5: "adopted_child", 6: "grandchild",
        7: "parent", 8: "parent_in_law", 9: "sibling", 10: "other_relative", 11: "non_relative",
    },
)

BUILTIN_ENCODINGS: Dict[str, Encoding] = {
    e.name: e for e in (YES_NO, FREQUENCY_5, PASS_FAIL, SEX, RELATIONSHIP)
}


def build_encodings(overrides: Optional[Mapping[str, Mapping[str, Any]]] = None) -> Dict[str, Encoding]:
    """Built-in scales extended with YAML ``encodings`` entries.

    ``overrides`` looks like ``{"yes_no": {"labels": {"ya": true}, "codes": {5: false}}}``.
    A name that is not built in is a new scale; its ``kind`` defaults to category.
    """
    encodings = dict(BUILTIN_ENCODINGS)
    for name, entry in (overrides or {}).items():
        entry = entry or {}
        if name in encodings:
            encodings[name] = encodings[name].extended(entry.get("labels"), entry.get("codes"))
        else:
            encodings[name] = Encoding(
                name=name,
                kind=entry.get("kind", CATEGORY),
                labels=entry.get("labels", {}) or {},
                codes=entry.get("codes", {}) or {},
            )
    return encodings


# ---------------- Scalar normalization ---------------- #

@dataclass(frozen=True)
class CanonicalField:
    meaning: str
    kind: str
    value: Any = None
    unrecognized: bool = False

    @property
    def is_missing(self) -> bool:
        return self.value is None


def normalize(raw: Any, encoding: Encoding, meaning: Optional[str] = None) -> CanonicalField:
    """Map one raw value onto ``encoding``. Unknown input -> missing, flagged unrecognized."""
    value, recognized = encoding.resolve(raw_value(raw))
    return CanonicalField(
        meaning=meaning or encoding.name,
        kind=encoding.kind,
        value=value,
        unrecognized=not recognized,
    )


# ---------------- Column normalization ---------------- #

def key_expr(col: str) -> pl.Expr:
    """Comparison key for a raw column of any dtype: trimmed, lower-case, '3.0' -> '3', blank/nan/. -> null."""
    k = (
        pl.col(col).cast(pl.Utf8)
        .str.strip_chars()
        .str.to_lowercase()
        .str.replace_all(r"\s+", " ")
        .str.replace(r"^(-?\d+)\.0+$", "${1}")
    )
    return pl.when(k.is_in(["", "nan", "."])).then(None).otherwise(k)


def _require_column(
    df: pl.DataFrame,
    col: Optional[str],
    out_col: str,
    dtype: pl.DataType,
    quality: Optional[DataQualityLog],
    table: str,
    wave: Optional[int],
) -> Optional[pl.DataFrame]:
    """Return ``df`` with a typed null ``out_col`` when the raw column is absent, else None."""
    if col is not None and col in df.columns:
        return None
    if quality is not None:
        quality.add(table, out_col, MISSING_COLUMN, wave=wave, value=col)
    logger.warning(f"Wave {wave}: {table} column {col!r} missing; {out_col} set to null")
    return df.with_columns(pl.lit(None, dtype=dtype).alias(out_col))


def normalize_column(
    df: pl.DataFrame,
    col: Optional[str],
    encoding: Encoding,
    out_col: Optional[str] = None,
    quality: Optional[DataQualityLog] = None,
    table: str = "",
    wave: Optional[int] = None,
) -> pl.DataFrame:
    """Replace/produce ``out_col`` with ``encoding`` applied to raw column ``col``."""
    out_col = out_col or col
    absent = _require_column(df, col, out_col, encoding.dtype, quality, table, wave)
    if absent is not None:
        return absent

    out = df.with_columns(key_expr(col).alias("__key"))
    out = out.with_columns(
        pl.col("__key")
        .replace_strict(encoding.lookup, default=None, return_dtype=encoding.dtype)
        .alias("__val")
    )
    if quality is not None:
        bad = out.filter(pl.col("__key").is_not_null() & pl.col("__val").is_null())
        if bad.height:
            quality.add_rows(bad, table, out_col, UNRECOGNIZED, wave=wave, value_col=col)
    return out.with_columns(pl.col("__val").alias(out_col)).drop(["__key", "__val"], strict=False)


def numeric_column(
    df: pl.DataFrame,
    col: Optional[str],
    out_col: Optional[str] = None,
    bounds: Optional[Tuple[Optional[float], Optional[float]]] = None,
    quality: Optional[DataQualityLog] = None,
    table: str = "",
    wave: Optional[int] = None,
) -> pl.DataFrame:
    """Parse ``col`` as Float64; unparseable -> null (unrecognized), out of ``bounds`` -> null (implausible)."""
    out_col = out_col or col
    absent = _require_column(df, col, out_col, pl.Float64, quality, table, wave)
    if absent is not None:
        return absent

    out = df.with_columns([
        key_expr(col).alias("__key"),
        pl.col(col).cast(pl.Utf8).str.strip_chars().cast(pl.Float64, strict=False).fill_nan(None).alias("__val"),
    ])
    if quality is not None:
        bad = out.filter(pl.col("__key").is_not_null() & pl.col("__val").is_null())
        if bad.height:
            quality.add_rows(bad, table, out_col, UNRECOGNIZED, wave=wave, value_col=col)

    if bounds is not None:
        lo, hi = bounds
        outside = pl.lit(False)
        if lo is not None:
            outside = outside | (pl.col("__val") < lo)
        if hi is not None:
            outside = outside | (pl.col("__val") > hi)
        outside = pl.col("__val").is_not_null() & outside
        if quality is not None:
            bad = out.filter(outside)
            if bad.height:
                quality.add_rows(bad, table, out_col, IMPLAUSIBLE, wave=wave, value_col="__val")
        out = out.with_columns(pl.when(outside).then(None).otherwise(pl.col("__val")).alias("__val"))

    return out.with_columns(pl.col("__val").alias(out_col)).drop(["__key", "__val"], strict=False)
