"""
Shared builders for in-memory survey extracts.

Raw frames are built with every column as a string, the way CSV extracts are
read, so the normalizer sees the same input it does in a real run.
"""
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import polars as pl
import pytest

from maternal_panel.config import Config, config_from_dict

RAVENS_ITEMS = [f"rv{i}" for i in range(1, 13)]
RAVENS_KEY = [1, 2, 3, 4, 5, 6, 1, 2, 3, 4, 5, 6]
K10_ITEMS = [f"k10_{i}" for i in range(1, 11)]
K10_LABELS = {
    1: "None of the time",
    2: "A little of the time",
    3: "Some of the time",
    4: "Most of the time",
    5: "All of the time",
}

DEMO_COLUMNS = [
    "hhid", "pid", "age", "sex", "relation", "pregnant_now",
    "birth_year", "birth_month", "birth_day", "int_year", "int_month", "int_day",
]


def _s(v) -> Optional[str]:
    return None if v is None else str(v)


def k10_values(total: int) -> List[int]:
    """Ten item values in 1..5 summing to ``total``."""
    base, rem = divmod(total, 10)
    return [base + 1] * rem + [base] * (10 - rem)


def ravens_answers(n_correct: int) -> Dict[str, int]:
    """First ``n_correct`` items answered per the key, the rest answered wrong."""
    return {
        item: (key if i < n_correct else key % 6 + 1)
        for i, (item, key) in enumerate(zip(RAVENS_ITEMS, RAVENS_KEY))
    }


def member(hhid, pid, age, sex, relation, **extra) -> dict:
    return {"hhid": hhid, "pid": pid, "age": age, "sex": sex, "relation": relation, **extra}


def frame(rows: Iterable[dict], columns: List[str]) -> pl.DataFrame:
    return pl.DataFrame(
        [{c: _s(r.get(c)) for c in columns} for r in rows],
        schema={c: pl.Utf8 for c in columns},
    )


def raw_wave(members: List[dict], k10_as_labels: bool = False) -> Dict[str, pl.DataFrame]:
    """Raw demographics, depression and cognitive extracts for one wave.

    A member dict may carry ``k10`` (list of up to ten item values, None for
    unanswered) and ``ravens`` (number of correct answers).
    """
    tables = {"demographics": frame(members, DEMO_COLUMNS)}

    dep_rows = []
    for m in members:
        if "k10" not in m:
            continue
        values = list(m["k10"]) + [None] * (10 - len(m["k10"]))
        if k10_as_labels:
            values = [None if v is None else K10_LABELS[v] for v in values]
        dep_rows.append({"hhid": m["hhid"], "pid": m["pid"], **dict(zip(K10_ITEMS, values))})
    if dep_rows:
        tables["depression"] = frame(dep_rows, ["hhid", "pid", *K10_ITEMS])

    cog_rows = [
        {"hhid": m["hhid"], "pid": m["pid"], **ravens_answers(m["ravens"])}
        for m in members if "ravens" in m
    ]
    if cog_rows:
        tables["cognitive"] = frame(cog_rows, ["hhid", "pid", *RAVENS_ITEMS])
    return tables


def config_dict(waves: Iterable[int] = (2,)) -> dict:
    return {
        "paths": {"raw_dir": "raw", "processed_dir": "processed"},
        "waves": {
            w: {
                "year": 2006 + 2 * w,
                "domains": {
                    "demographics": {},
                    "depression": {},
                    "cognitive": {"ravens": {"items": RAVENS_ITEMS, "key": RAVENS_KEY}},
                },
            }
            for w in waves
        },
    }


def make_config(waves: Iterable[int] = (2,), **sections) -> Config:
    raw = config_dict(waves)
    raw.update(sections)
    return config_from_dict(raw, base_dir=Path.cwd())


@pytest.fixture
def config() -> Config:
    return make_config()


@pytest.fixture
def moderate_household() -> List[dict]:
    """Head, spouse with K10 = 25, one child with 7 Raven's items correct."""
    return [
        member("H", 1, 35, "Male", "Head"),
        member("H", 2, 30, "Female", "Spouse", k10=k10_values(25)),
        member("H", 3, 6, "Male", "Child", ravens=7),
    ]
