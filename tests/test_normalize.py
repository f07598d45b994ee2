"""
Tests for raw value classification and the encoding tables.
"""
import math

import numpy as np
import polars as pl
import pytest

from maternal_panel.normalize import (
    BUILTIN_ENCODINGS,
    FREQUENCY_5,
    MISSING,
    RELATIONSHIP,
    SEX,
    YES_NO,
    Code,
    Label,
    build_encodings,
    label_key,
    normalize,
    normalize_column,
    numeric_column,
    raw_value,
    scalar_key,
)
from maternal_panel.quality import IMPLAUSIBLE, MISSING_COLUMN, UNRECOGNIZED, DataQualityLog


class TestRawValue:
    """Untyped cells become Label, Code or MISSING."""

    def test_missing_inputs(self):
        assert raw_value(None) is MISSING
        assert raw_value(float("nan")) is MISSING
        assert raw_value("   ") is MISSING

    def test_numeric_codes(self):
        assert raw_value(3) == Code(3)
        assert raw_value(np.int64(2)) == Code(2)
        assert raw_value(4.0) == Code(4)
        assert raw_value(" 5 ") == Code(5)
        assert raw_value("1.0") == Code(1)

    def test_labels(self):
        assert raw_value("Most of the time") == Label("Most of the time")
        assert raw_value(2.5) == Label("2.5")

    def test_already_classified_passes_through(self):
        assert raw_value(Label("Yes")) == Label("Yes")
        assert raw_value(MISSING) is MISSING

    def test_keys(self):
        assert label_key("  Most   of the TIME ") == "most of the time"
        assert scalar_key(3.0) == "3"
        assert scalar_key("B") == "b"


class TestNormalize:
    """Scalar normalization through one declared encoding."""

    @pytest.mark.parametrize("raw", ["Yes", " yes ", "YES", 1, "1"])
    def test_yes_variants(self, raw):
        f = normalize(raw, YES_NO, "pregnant_now")
        assert f.value is True
        assert f.meaning == "pregnant_now"
        assert not f.unrecognized

    def test_frequency_labels_and_codes_agree(self):
        for code, label in enumerate(
            ["None of the time", "A little of the time", "Some of the time", "Most of the time", "All of the time"],
            start=1,
        ):
            assert normalize(label, FREQUENCY_5).value == code
            assert normalize(code, FREQUENCY_5).value == code

    def test_unrecognized_is_missing_not_error(self):
        f = normalize("Sometimes, maybe", FREQUENCY_5)
        assert f.is_missing
        assert f.unrecognized
        f = normalize(9, FREQUENCY_5)
        assert f.is_missing
        assert f.unrecognized

    def test_absent_is_missing_and_recognized(self):
        f = normalize(None, YES_NO)
        assert f.is_missing
        assert not f.unrecognized

    def test_relationship_labels_and_codes(self):
        assert normalize("Wife/Husband", RELATIONSHIP).value == "spouse"
        assert normalize(2, RELATIONSHIP).value == "spouse"
        assert normalize("Mother-in-law", RELATIONSHIP).value == "parent_in_law"

    def test_kind_is_single_resolved_type(self):
        assert normalize("No", YES_NO).kind == "boolean"
        assert normalize(3, FREQUENCY_5).kind == "ordinal"
        assert normalize("F", SEX).kind == "category"


class TestBuildEncodings:
    """YAML entries extend or add scales."""

    def test_extends_builtin(self):
        enc = build_encodings({"yes_no": {"labels": {"Ndiyo": True}, "codes": {9: False}}})
        assert normalize("ndiyo", enc["yes_no"]).value is True
        assert normalize(9, enc["yes_no"]).value is False
        # Built-in table untouched
        assert normalize("ndiyo", BUILTIN_ENCODINGS["yes_no"]).is_missing

    def test_new_scale(self):
        enc = build_encodings({"tenure": {"kind": "category", "labels": {"Owned": "own", "Rented": "rent"}}})
        assert normalize("rented", enc["tenure"]).value == "rent"

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            build_encodings({"odd": {"kind": "interval"}})


class TestNormalizeColumn:
    """Column-wise normalization records misses in the quality log."""

    def test_mixed_labels_and_codes(self):
        df = pl.DataFrame({"hhid": ["1", "1", "2", "2"], "pid": ["1", "2", "1", "2"],
                           "preg": ["Yes", "2", " no ", "dunno"]})
        quality = DataQualityLog()
        out = normalize_column(df, "preg", YES_NO, "pregnant_now", quality, "demographics", 1)
        assert out["pregnant_now"].to_list() == [True, False, False, None]
        assert quality.count(reason=UNRECOGNIZED, field="pregnant_now") == 1
        rec = quality.to_frame().row(0, named=True)
        assert rec["hhid"] == "2" and rec["pid"] == "2" and rec["value"] == "dunno"

    def test_integer_dtype_column(self):
        df = pl.DataFrame({"sex": [1, 2, None]})
        out = normalize_column(df, "sex", SEX)
        assert out["sex"].to_list() == ["male", "female", None]

    def test_absent_column_is_typed_null(self):
        df = pl.DataFrame({"hhid": ["1"]})
        quality = DataQualityLog()
        out = normalize_column(df, "preg", YES_NO, "pregnant_now", quality, "demographics", 3)
        assert out.schema["pregnant_now"] == pl.Boolean
        assert out["pregnant_now"].null_count() == 1
        assert quality.count(reason=MISSING_COLUMN) == 1


class TestNumericColumn:
    """Numeric parsing with sanity bounds."""

    def test_bounds_and_garbage(self):
        df = pl.DataFrame({"hhid": ["1"] * 4, "pid": ["1", "2", "3", "4"], "h": ["120.5", "abc", "900", ""]})
        quality = DataQualityLog()
        out = numeric_column(df, "h", "height", (40, 220), quality, "anthropometry", 2)
        values = out["height"].to_list()
        assert math.isclose(values[0], 120.5)
        assert values[1:] == [None, None, None]
        assert quality.count(reason=UNRECOGNIZED) == 1
        assert quality.count(reason=IMPLAUSIBLE) == 1

    def test_nan_is_missing(self):
        df = pl.DataFrame({"x": [float("nan"), 3.0]})
        out = numeric_column(df, "x")
        assert out["x"].to_list() == [None, 3.0]
