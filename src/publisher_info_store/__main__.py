"""Module entrypoint for ``python -m publisher_info_store``."""

from __future__ import annotations

from publisher_info_store.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
