from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

from refinerysim.engine import RefinerySimulation
from refinerysim.storage import list_snapshots, load_state, save_named_snapshot, save_state, snapshot_path


def _assert(cond: bool, msg: str) -> None:
    if not cond:
        raise AssertionError(msg)


def test_save_and_load_state() -> None:
    with tempfile.TemporaryDirectory() as td:
        path = Path(td) / "state.json"
        sim = RefinerySimulation()
        sim.set_param("product_focus", 0.8)
        sim.advance(90)
        save_state(sim, path)

        payload = json.loads(path.read_text(encoding="utf-8"))
        _assert(payload["version"] == "1.0.0" and "snapshot" in payload, "save file wraps the snapshot")

        loaded = load_state(path)
        _assert(loaded.get_time() == 90.0, "time restored")
        _assert(loaded.get_params()["product_focus"] == 0.8, "params restored")
        _assert(loaded.get_logs()[0]["message"] == "Snapshot loaded.", "load is logged")


def test_missing_or_corrupt_file_gives_fresh_run() -> None:
    with tempfile.TemporaryDirectory() as td:
        missing = load_state(Path(td) / "nope.json")
        _assert(missing.get_time() == 0.0, "missing file starts fresh")

        bad = Path(td) / "bad.json"
        bad.write_text("{not json", encoding="utf-8")
        _assert(load_state(bad).get_time() == 0.0, "corrupt file starts fresh")

        wrong = Path(td) / "wrong.json"
        wrong.write_text(json.dumps({"snapshot": [1, 2, 3]}), encoding="utf-8")
        _assert(load_state(wrong).get_time() == 0.0, "non-mapping snapshot starts fresh")


def test_named_snapshots() -> None:
    with tempfile.TemporaryDirectory() as td:
        old = os.environ.get("REFINERYSIM_DATA_DIR")
        os.environ["REFINERYSIM_DATA_DIR"] = td
        try:
            sim = RefinerySimulation()
            sim.advance(30)
            save_named_snapshot(sim, "before turnaround!")
            _assert(list_snapshots() == ["before_turnaround"], "names are made filesystem safe")
            restored = load_state(snapshot_path("before turnaround!"))
            _assert(restored.get_time() == 30.0, "named snapshot restores")
        finally:
            if old is None:
                os.environ.pop("REFINERYSIM_DATA_DIR", None)
            else:
                os.environ["REFINERYSIM_DATA_DIR"] = old


def main() -> None:
    tests = [
        test_save_and_load_state,
        test_missing_or_corrupt_file_gives_fresh_run,
        test_named_snapshots,
    ]
    for t in tests:
        t()
        print(f"OK  {t.__name__}")
    print(f"ALL OK ({len(tests)} tests)")


if __name__ == "__main__":
    main()
