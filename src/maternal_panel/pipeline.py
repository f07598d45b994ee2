"""
End-to-end panel build.

    read extracts -> build domain tables -> resolve roles -> assemble   (per wave)
    -> stitch -> link mothers -> analysis sample -> prenatal exposure -> write

Usage:
    maternal-panel [path/to/config.yml]
"""
from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import polars as pl
from tqdm import tqdm

from .assemble import assemble_wave
from .colorlog import add_file_handler, setup_colored_logging
from .config import Config, ConfigError, load_config
from .io import read_wave, write_panel
from .link import link_mothers, mark_analysis_sample
from .prenatal import prenatal_inputs, resolve_prenatal
from .quality import DataQualityLog, PipelineStateError
from .roles import resolve_roles
from .stitch import stitch
from .tables import build_wave_tables

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    panel: pl.DataFrame      # one row per child-wave, linked, with prenatal fields
    members: pl.DataFrame    # stitched member panel, every roster member
    roles: pl.DataFrame
    quality: DataQualityLog
    paths: Dict[str, Path] = field(default_factory=dict)


def _share(n: int, d: int) -> str:
    return f"{n / d:.1%}" if d else "n/a"


def log_sanity(panel: pl.DataFrame) -> None:
    n = panel.height
    linked = panel.filter(pl.col("m_pid").is_not_null()).height
    sample = panel.filter(pl.col("analysis_sample")).height
    prenatal = panel.filter(pl.col("has_prenatal")).height
    logger.info(f"Sanity: children linked to a mother {linked:,}/{n:,} ({_share(linked, n)})")
    logger.info(f"Sanity: analysis sample {sample:,}/{n:,} ({_share(sample, n)})")
    logger.info(f"Sanity: prenatal coverage {prenatal:,}/{n:,} ({_share(prenatal, n)})")
    for (wave,), g in panel.group_by(["wave"], maintain_order=True):
        logger.info(
            f"Sanity: wave {wave} children {g.height:,}, "
            f"analysis sample {_share(g.filter(pl.col('analysis_sample')).height, g.height)}"
        )


def build_panel(
    raw_tables: Mapping[int, Mapping[str, Optional[pl.DataFrame]]],
    cfg: Config,
    quality: Optional[DataQualityLog] = None,
) -> PipelineResult:
    """Run every transform on in-memory raw extracts ``{wave: {domain: frame}}``."""
    quality = quality if quality is not None else DataQualityLog()
    assemblies: Dict[int, pl.DataFrame] = {}
    role_frames: List[pl.DataFrame] = []

    for wave in tqdm(list(cfg.waves), desc="Building waves"):
        wcfg = cfg.waves[wave]
        tables = build_wave_tables(dict(raw_tables.get(wave, {})), wcfg, cfg, quality)
        demo = tables.get("demographics")
        if demo is None:
            logger.warning(f"Wave {wave}: no usable demographics; wave skipped")
            continue
        role_frames.append(resolve_roles(demo, cfg.roles, wave))
        assemblies[wave] = assemble_wave(tables, wave, cfg.roles.child_max_age)

    if not assemblies:
        raise PipelineStateError("No wave has a usable demographics roster")

    members = stitch(
        assemblies,
        cfg.stitch,
        wave_years={w: c.year for w, c in cfg.waves.items()},
        child_max_age=cfg.roles.child_max_age,
        quality=quality,
    )
    roles = pl.concat(role_frames, how="vertical")

    linked = mark_analysis_sample(link_mothers(members, roles))
    interviews, births, scores = prenatal_inputs(members, roles, cfg.prenatal, quality)
    panel = resolve_prenatal(linked, interviews, births, scores, cfg.thresholds, cfg.prenatal)

    log_sanity(panel)
    return PipelineResult(panel=panel, members=members, roles=roles, quality=quality)


def run_pipeline(cfg: Config) -> PipelineResult:
    """Read every configured extract, build the panel and write the outputs."""
    quality = DataQualityLog()
    raw = {wave: read_wave(wcfg, cfg, quality) for wave, wcfg in cfg.waves.items()}
    result = build_panel(raw, cfg, quality)

    paths = write_panel(result.panel, cfg)
    if cfg.write_parquet:
        members_path = cfg.get_output_path("members_parquet", cfg.processed_dir / "member_panel.parquet")
        members_path.parent.mkdir(parents=True, exist_ok=True)
        result.members.write_parquet(str(members_path))
        logger.info(f"Saved member panel to {members_path}")
        paths["members"] = members_path
    paths["quality"] = quality.write(cfg.get_output_path("data_quality", cfg.processed_dir / "data_quality.csv"))
    for row in quality.summary().head(10).iter_rows(named=True):
        logger.info(f"Quality: {row['table']} w{row['wave']} {row['field']} {row['reason']}: {row['n']:,}")
    result.paths = paths
    return result


def main(argv: Optional[List[str]] = None) -> int:
    argv = argv or sys.argv[1:]
    setup_colored_logging(root=Path.cwd())
    cfg_path = Path(argv[0]) if argv else None
    try:
        cfg = load_config(cfg_path)
    except (ConfigError, FileNotFoundError) as e:
        logger.error(f"Configuration error: {e}")
        return 2

    log_path = cfg.processed_dir / f"panel_build_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    fh = add_file_handler(log_path)
    logger.info(f"📄 Logging to: {log_path}")
    try:
        result = run_pipeline(cfg)
    finally:
        logging.root.removeHandler(fh)
        fh.close()

    logger.info(f"✅ Panel completed: {result.panel.height:,} child-wave rows, outputs in {cfg.processed_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
