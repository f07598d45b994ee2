"""
Tests for YAML configuration parsing and validation.
"""
import copy
from pathlib import Path

import pytest
import yaml

from conftest import config_dict
from maternal_panel.config import ConfigError, config_from_dict, load_config, resolve_tokens


def with_section(**sections):
    raw = copy.deepcopy(config_dict())
    raw.update(sections)
    return raw


class TestDefaults:
    """Omitted sections fall back to the documented defaults."""

    def test_default_constants(self, config):
        assert config.thresholds.k10_binary == 20
        assert config.thresholds.k10_prenatal == 30
        assert config.thresholds.k10_min_items == 8
        assert config.roles.mother_min_age == 15
        assert config.roles.child_max_age == 17
        assert config.roles.mother_selection == "source_order"
        assert config.prenatal.window_months == 9
        assert config.prenatal.sensitivity_windows == [6, 12]
        assert config.write_stata is False

    def test_paths_resolve_against_base_dir(self, tmp_path):
        cfg = config_from_dict(config_dict(), base_dir=tmp_path)
        assert cfg.raw_dir == (tmp_path / "raw").resolve()
        assert cfg.processed_dir == (tmp_path / "processed").resolve()

    def test_domain_defaults(self, config):
        dcfg = config.waves[2].domain("anthropometry")
        assert dcfg.file is None
        assert dcfg.column("height") == "height"


class TestValidation:
    """Invalid analysis constants stop the run before any data is read."""

    @pytest.mark.parametrize("sections", [
        {"thresholds": {"k10_binary": 5}},
        {"thresholds": {"k10_prenatal": 60}},
        {"thresholds": {"k10_min_items": 0}},
        {"thresholds": {"k10_binary": "high"}},
        {"prenatal": {"window_months": -1}},
        {"prenatal": {"sensitivity_windows": [6, 0]}},
        {"roles": {"mother_selection": "oldest"}},
        {"roles": {"child_max_age": -1}},
        {"stitch": {"age_tolerance_years": -0.5}},
    ])
    def test_invalid_constants(self, sections):
        with pytest.raises(ConfigError):
            config_from_dict(with_section(**sections))

    def test_answer_key_length_mismatch(self):
        raw = with_section()
        raw["waves"][2]["domains"]["cognitive"]["ravens"]["key"] = [1, 2, 3]
        with pytest.raises(ConfigError, match="answer key"):
            config_from_dict(raw)

    def test_unknown_encoding(self):
        raw = with_section()
        raw["waves"][2]["domains"]["depression"] = {"encodings": {"k10_1": "likert_7"}}
        with pytest.raises(ConfigError, match="likert_7"):
            config_from_dict(raw)

    def test_unknown_domain(self):
        raw = with_section()
        raw["waves"][2]["domains"]["nutrition"] = {}
        with pytest.raises(ConfigError):
            config_from_dict(raw)

    def test_no_waves(self):
        with pytest.raises(ConfigError):
            config_from_dict({"paths": {}})

    def test_lookup_of_unknown_encoding(self, config):
        with pytest.raises(ConfigError):
            config.encoding("likert_7")


class TestTokens:
    """${a.b} references into the YAML tree."""

    def test_resolve(self):
        tree = {"paths": {"processed_dir": "out"}}
        assert resolve_tokens("${paths.processed_dir}/q.csv", tree) == "out/q.csv"
        assert resolve_tokens(3, tree) == 3

    def test_unresolved(self):
        with pytest.raises(ConfigError):
            resolve_tokens("${paths.nowhere}/q.csv", {"paths": {}})


class TestLoadConfig:
    """Reading from disk."""

    def test_load_from_file(self, tmp_path):
        raw = with_section(outputs={"stata": True})
        raw["paths"]["outputs"] = {"data_quality": "${paths.processed_dir}/dq.csv"}
        path = tmp_path / "config.yml"
        path.write_text(yaml.safe_dump(raw))
        cfg = load_config(path)
        assert cfg.config_path == path.resolve()
        assert cfg.write_stata is True
        assert cfg.get_output_path("data_quality", Path("x")) == (tmp_path / "processed" / "dq.csv").resolve()
        assert list(cfg.waves) == [2]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yml")

    def test_bundled_config_is_valid(self):
        cfg = load_config(Path(__file__).resolve().parents[1] / "src" / "maternal_panel" / "config.yml")
        assert sorted(cfg.waves) == [1, 2, 3]
