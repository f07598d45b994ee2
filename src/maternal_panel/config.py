"""
Configuration loading for the panel build.

One YAML file describes where the raw wave extracts live, how each wave's
tables name their columns, which categorical scale every coded field uses,
and the analysis constants (K10 thresholds, role rules, prenatal window).
Everything is parsed into dataclasses and validated up front: an invalid
threshold or window silently corrupts every row downstream, so it is the one
class of problem that stops the run (``ConfigError``).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .normalize import Encoding, build_encodings

logger = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).resolve().parent
# Default config search paths
_CFG_SEARCH = [
    Path.cwd() / "config.yml",
    PACKAGE_DIR / "config.yml",
]

DOMAINS = (
    "demographics",
    "depression",
    "cognitive",
    "anthropometry",
    "time_use",
    "expenditure",
    "health",
    "insurance",
)

MOTHER_SELECTION_POLICIES = ("source_order", "relation_priority")

K10_MIN, K10_MAX = 10, 50


class ConfigError(ValueError):
    """Invalid configuration; raised before any data is read."""


# ---------------- Configuration object model ---------------- #

@dataclass
class DomainConfig:
    name: str
    file: Optional[str] = None  # relative to raw_dir
    columns: Dict[str, str] = field(default_factory=dict)  # canonical -> raw column
    options: Dict[str, Any] = field(default_factory=dict)
    convert_categoricals: bool = False  # .dta only: read value labels as strings

    def column(self, canonical: str, default: Optional[str] = None) -> Optional[str]:
        return self.columns.get(canonical, default if default is not None else canonical)


@dataclass
class WaveConfig:
    wave: int
    year: Optional[int] = None
    domains: Dict[str, DomainConfig] = field(default_factory=dict)

    def domain(self, name: str) -> DomainConfig:
        return self.domains.get(name, DomainConfig(name=name))


@dataclass
class ThresholdConfig:
    k10_binary: float = 20
    k10_prenatal: float = 30
    k10_min_items: int = 8


@dataclass
class RoleConfig:
    mother_min_age: float = 15
    child_max_age: float = 17
    mother_relations: List[str] = field(default_factory=lambda: ["head", "spouse", "parent_in_law"])
    child_relations: List[str] = field(default_factory=lambda: ["child", "stepchild", "adopted_child", "grandchild"])
    mother_selection: str = "source_order"


@dataclass
class PrenatalConfig:
    window_months: float = 9
    sensitivity_windows: List[float] = field(default_factory=lambda: [6, 12])
    days_per_month: float = 30.44
    min_birth_year: int = 1900
    future_slack_days: int = 0


@dataclass
class StitchConfig:
    field_aliases: Dict[str, Dict[int, str]] = field(default_factory=dict)
    age_tolerance_years: float = 2.0


@dataclass
class Config:
    raw_dir: Path
    processed_dir: Path
    waves: Dict[int, WaveConfig] = field(default_factory=dict)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    roles: RoleConfig = field(default_factory=RoleConfig)
    prenatal: PrenatalConfig = field(default_factory=PrenatalConfig)
    stitch: StitchConfig = field(default_factory=StitchConfig)
    encodings: Dict[str, Encoding] = field(default_factory=build_encodings)
    outputs: Dict[str, Path] = field(default_factory=dict)
    write_stata: bool = False
    write_parquet: bool = False
    config_path: Optional[Path] = None

    def get_output_path(self, key: str, default: Path) -> Path:
        p = self.outputs.get(key)
        return p if p is not None else default

    def encoding(self, name: str) -> Encoding:
        try:
            return self.encodings[name]
        except KeyError:
            raise ConfigError(f"Unknown encoding {name!r}; known: {sorted(self.encodings)}") from None


def _coerce_to_path(p: Any, base: Path) -> Path:
    if isinstance(p, Path):
        return p
    if p is None:
        return base
    return (base / str(p)).resolve() if not str(p).startswith("/") else Path(str(p)).resolve()


def resolve_tokens(s: Any, lookup: Dict[str, Any]) -> Any:
    """Resolve ${a.b.c} tokens in a string using the raw YAML tree."""
    if not isinstance(s, str):
        return s
    out = s
    while "${" in out:
        start = out.find("${")
        end = out.find("}", start)
        if end == -1:
            break
        token = out[start + 2 : end]
        cur: Any = lookup
        for part in token.split('.'):
            if isinstance(cur, dict) and part in cur:
                cur = cur[part]
            else:
                cur = None
                break
        if cur is None:
            raise ConfigError(f"Unresolved token ${{{token}}} in {s!r}")
        out = out[:start] + str(cur) + out[end + 1 :]
    return out


def _parse_domain(name: str, d: Dict[str, Any], lookup: Dict[str, Any]) -> DomainConfig:
    d = d or {}
    known = {"file", "columns", "convert_categoricals"}
    return DomainConfig(
        name=name,
        file=resolve_tokens(d.get("file"), lookup),
        columns={str(k): str(v) for k, v in (d.get("columns", {}) or {}).items()},
        options={k: v for k, v in d.items() if k not in known},
        convert_categoricals=bool(d.get("convert_categoricals", False)),
    )


def _parse_waves(raw_waves: Any, lookup: Dict[str, Any]) -> Dict[int, WaveConfig]:
    waves: Dict[int, WaveConfig] = {}
    for key, w in (raw_waves or {}).items():
        try:
            wave = int(key)
        except (TypeError, ValueError):
            raise ConfigError(f"Wave keys must be integers, got {key!r}") from None
        w = w or {}
        domains = {}
        for name, d in (w.get("domains", {}) or {}).items():
            if name not in DOMAINS:
                raise ConfigError(f"Wave {wave}: unknown domain {name!r}; expected one of {DOMAINS}")
            domains[name] = _parse_domain(name, d, lookup)
        waves[wave] = WaveConfig(wave=wave, year=w.get("year"), domains=domains)
    return dict(sorted(waves.items()))


def load_config(config_path: Optional[str | Path] = None) -> Config:
    """
    Load configuration from YAML and return a validated Config object.

    If config_path is None, searches the working directory and then the
    package's bundled ``config.yml``. Relative paths resolve against the
    directory holding the config file.
    """
    cfg_path: Optional[Path] = None
    if config_path is not None:
        cfg_path = Path(config_path)
        if not cfg_path.exists():
            raise FileNotFoundError(f"Config not found: {cfg_path}")
    else:
        for p in _CFG_SEARCH:
            if p.exists():
                cfg_path = p
                break
    if cfg_path is None:
        raise FileNotFoundError("config.yml not found in expected locations.")

    with open(cfg_path, "r") as f:
        raw = yaml.safe_load(f) or {}
    cfg = config_from_dict(raw, base_dir=cfg_path.resolve().parent)
    cfg.config_path = cfg_path.resolve()
    logger.info(f"Loaded config {cfg.config_path} ({len(cfg.waves)} waves)")
    return cfg


def config_from_dict(raw: Dict[str, Any], base_dir: Optional[Path] = None) -> Config:
    """Build and validate a Config from an already-parsed YAML tree."""
    base_dir = base_dir or Path.cwd()
    paths = raw.get("paths", {}) or {}
    raw_dir = _coerce_to_path(resolve_tokens(paths.get("raw_dir", "data/raw"), raw), base_dir)
    processed_dir = _coerce_to_path(resolve_tokens(paths.get("processed_dir", "data/processed"), raw), base_dir)
    outputs: Dict[str, Path] = {
        k: _coerce_to_path(resolve_tokens(v, raw), base_dir)
        for k, v in (paths.get("outputs", {}) or {}).items()
    }

    t = raw.get("thresholds", {}) or {}
    r = raw.get("roles", {}) or {}
    p = raw.get("prenatal", {}) or {}
    s = raw.get("stitch", {}) or {}
    o = raw.get("outputs", {}) or {}
    defaults_r, defaults_p = RoleConfig(), PrenatalConfig()

    try:
        cfg = Config(
            raw_dir=raw_dir,
            processed_dir=processed_dir,
            waves=_parse_waves(raw.get("waves"), raw),
            thresholds=ThresholdConfig(
                k10_binary=float(t.get("k10_binary", 20)),
                k10_prenatal=float(t.get("k10_prenatal", 30)),
                k10_min_items=int(t.get("k10_min_items", 8)),
            ),
            roles=RoleConfig(
                mother_min_age=float(r.get("mother_min_age", defaults_r.mother_min_age)),
                child_max_age=float(r.get("child_max_age", defaults_r.child_max_age)),
                mother_relations=list(r.get("mother_relations", defaults_r.mother_relations)),
                child_relations=list(r.get("child_relations", defaults_r.child_relations)),
                mother_selection=str(r.get("mother_selection", defaults_r.mother_selection)),
            ),
            prenatal=PrenatalConfig(
                window_months=float(p.get("window_months", defaults_p.window_months)),
                sensitivity_windows=[float(x) for x in p.get("sensitivity_windows", defaults_p.sensitivity_windows)],
                days_per_month=float(p.get("days_per_month", defaults_p.days_per_month)),
                min_birth_year=int(p.get("min_birth_year", defaults_p.min_birth_year)),
                future_slack_days=int(p.get("future_slack_days", defaults_p.future_slack_days)),
            ),
            stitch=StitchConfig(
                field_aliases={
                    str(k): {int(w): str(c) for w, c in (v or {}).items()}
                    for k, v in (s.get("field_aliases", {}) or {}).items()
                },
                age_tolerance_years=float(s.get("age_tolerance_years", 2.0)),
            ),
            encodings=build_encodings(raw.get("encodings")),
            outputs=outputs,
            write_stata=bool(o.get("stata", False)),
            write_parquet=bool(o.get("parquet", False)),
        )
    except (TypeError, ValueError) as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(f"Malformed configuration value: {e}") from e

    validate_config(cfg)
    return cfg


def _check_k10(name: str, value: float) -> None:
    if not (K10_MIN <= value <= K10_MAX):
        raise ConfigError(f"thresholds.{name}={value} outside the K10 range [{K10_MIN}, {K10_MAX}]")


def _validate_items(wave: int, test: str, entry: Dict[str, Any]) -> None:
    items = entry.get("items") or []
    key = entry.get("key") or []
    if not items:
        raise ConfigError(f"Wave {wave}: cognitive.{test} has no items")
    if len(items) != len(key):
        raise ConfigError(
            f"Wave {wave}: cognitive.{test} has {len(items)} items but an answer key of length {len(key)}"
        )


def validate_config(cfg: Config) -> None:
    """Raise ConfigError on anything that would silently invalidate downstream rows."""
    if not cfg.waves:
        raise ConfigError("No waves configured")

    _check_k10("k10_binary", cfg.thresholds.k10_binary)
    _check_k10("k10_prenatal", cfg.thresholds.k10_prenatal)
    if not (1 <= cfg.thresholds.k10_min_items <= 10):
        raise ConfigError(f"thresholds.k10_min_items={cfg.thresholds.k10_min_items} outside [1, 10]")

    for w in [cfg.prenatal.window_months, *cfg.prenatal.sensitivity_windows]:
        if w <= 0:
            raise ConfigError(f"Prenatal window must be positive, got {w}")
    if cfg.prenatal.days_per_month <= 0:
        raise ConfigError("prenatal.days_per_month must be positive")
    if cfg.prenatal.future_slack_days < 0:
        raise ConfigError("prenatal.future_slack_days must be non-negative")

    if cfg.roles.mother_min_age < 0 or cfg.roles.child_max_age < 0:
        raise ConfigError("Role age limits must be non-negative")
    if cfg.roles.mother_selection not in MOTHER_SELECTION_POLICIES:
        raise ConfigError(
            f"roles.mother_selection={cfg.roles.mother_selection!r}; expected one of {MOTHER_SELECTION_POLICIES}"
        )
    if cfg.stitch.age_tolerance_years < 0:
        raise ConfigError("stitch.age_tolerance_years must be non-negative")

    for wave, wcfg in cfg.waves.items():
        dep = wcfg.domains.get("depression")
        if dep is not None and dep.options.get("items") is not None and len(dep.options["items"]) != 10:
            raise ConfigError(f"Wave {wave}: depression.items must list the 10 K10 items")
        cog = wcfg.domains.get("cognitive")
        if cog is not None:
            for test in ("ravens", "math", "english"):
                if test in cog.options:
                    _validate_items(wave, test, cog.options[test] or {})
        for dcfg in wcfg.domains.values():
            for fld, enc in (dcfg.options.get("encodings", {}) or {}).items():
                if enc not in cfg.encodings:
                    raise ConfigError(f"Wave {wave}: {dcfg.name}.{fld} uses unknown encoding {enc!r}")
