# src/rasterkit/gaussstretch/__main__.py
"""Entry point for ``python -m rasterkit.gaussstretch`` and the gaussstretch script."""
from __future__ import annotations

import sys


def main(argv: list[str] | None = None) -> int:
    from rasterkit.gaussstretch.cli import main as cli_main
    return cli_main(argv)


if __name__ == "__main__":
    sys.exit(main())
