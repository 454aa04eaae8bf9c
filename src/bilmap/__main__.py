"""Module entrypoint for `python -m bilmap`."""

from __future__ import annotations

from bilmap.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
