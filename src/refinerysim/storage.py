from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import List, Optional

from refinerysim.config import EngineConfig
from refinerysim.engine import RefinerySimulation, SnapshotError

logger = logging.getLogger(__name__)

SAVE_VERSION = "1.0.0"


def project_root() -> Path:
    # .../src/refinerysim/storage.py -> parents[2] == repo root
    return Path(__file__).resolve().parents[2]


def data_dir() -> Path:
    override = os.environ.get("REFINERYSIM_DATA_DIR")
    p = Path(override) if override else project_root() / "data"
    p.mkdir(parents=True, exist_ok=True)
    return p


def state_path() -> Path:
    return data_dir() / "state.json"


def snapshots_dir() -> Path:
    p = data_dir() / "snapshots"
    p.mkdir(parents=True, exist_ok=True)
    return p


def _safe_name(name: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9_.-]+", "_", str(name)).strip("._")
    return cleaned or "snapshot"


def snapshot_path(name: str) -> Path:
    return snapshots_dir() / f"{_safe_name(name)}.json"


def save_state(sim: RefinerySimulation, path: Optional[Path] = None) -> Path:
    p = path or state_path()
    payload = {
        "version": SAVE_VERSION,
        "snapshot": sim.create_snapshot(),
    }
    p.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    return p


def save_named_snapshot(sim: RefinerySimulation, name: str) -> Path:
    return save_state(sim, path=snapshot_path(name))


def list_snapshots() -> List[str]:
    return sorted(p.stem for p in snapshots_dir().glob("*.json"))


def load_state(path: Optional[Path] = None, cfg: Optional[EngineConfig] = None) -> RefinerySimulation:
    """Load a saved run; a missing or corrupt file yields a fresh simulation."""

    sim = RefinerySimulation(cfg=cfg)
    p = path or state_path()
    if not p.exists():
        return sim

    try:
        payload = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("could not read %s (%s); starting a fresh run", p, exc)
        return sim

    data = payload.get("snapshot", payload) if isinstance(payload, dict) else payload
    try:
        sim.load_snapshot(data)
    except SnapshotError as exc:
        logger.warning("ignoring malformed save %s: %s", p, exc)
        return RefinerySimulation(cfg=cfg)
    return sim


def reset_data_files() -> None:
    """Delete the autosave and every named snapshot."""

    state_path().unlink(missing_ok=True)
    for p in snapshots_dir().glob("*.json"):
        p.unlink(missing_ok=True)
