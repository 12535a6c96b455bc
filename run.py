from __future__ import annotations

import logging
import sys
from pathlib import Path


def _bootstrap_src() -> None:
    root = Path(__file__).resolve().parent
    src = root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))


def main() -> int:
    _bootstrap_src()

    # Make Windows consoles UTF-8 friendly when the stream allows it.
    for stream in (sys.stdout, sys.stderr):
        reconf = getattr(stream, "reconfigure", None)
        if callable(reconf):
            try:
                reconf(encoding="utf-8")
            except (OSError, ValueError) as exc:
                print(f"console encoding unchanged: {exc}", file=sys.stderr)

    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    from refinerysim.cli import main as sim_main

    return sim_main()


if __name__ == "__main__":
    raise SystemExit(main())
