from __future__ import annotations

import builtins
import os
import tempfile
from typing import Iterator, List

from refinerysim.cli import main as cli_main
from refinerysim.storage import load_state, state_path


def _assert(cond: bool, msg: str) -> None:
    if not cond:
        raise AssertionError(msg)


def _run_cli(answers: List[str]) -> None:
    feed: Iterator[str] = iter(answers)

    def fake_input(prompt: str = "") -> str:
        try:
            return next(feed)
        except StopIteration:
            raise EOFError

    real_input = builtins.input
    builtins.input = fake_input
    try:
        cli_main()
    finally:
        builtins.input = real_input


def test_menu_changes_are_saved_before_quit() -> None:
    with tempfile.TemporaryDirectory() as td:
        old = os.environ.get("REFINERYSIM_DATA_DIR")
        os.environ["REFINERYSIM_DATA_DIR"] = td
        try:
            # input runs dry mid-session, so nothing saves on the way out
            _run_cli(["2", "60", "", "", "", "", "3", "winterDiesel"])
            saved = load_state(state_path())
            _assert(saved.get_params()["crude_intake"] == 60.0, "parameter change is saved right away")
            _assert(saved.get_scenario()["key"] == "winterDiesel", "scenario change is saved right away")

            _run_cli(["6", "1"])
            saved = load_state(state_path())
            _assert(saved.get_logistics_state()["cooldowns"]["convoy"] > 0, "logistics action is saved right away")
        finally:
            if old is None:
                os.environ.pop("REFINERYSIM_DATA_DIR", None)
            else:
                os.environ["REFINERYSIM_DATA_DIR"] = old


def main() -> None:
    tests = [
        test_menu_changes_are_saved_before_quit,
    ]
    for t in tests:
        t()
        print(f"OK  {t.__name__}")
    print(f"ALL OK ({len(tests)} tests)")


if __name__ == "__main__":
    main()
