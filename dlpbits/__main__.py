"""
Module entry point so `python -m dlpbits` runs the loader CLI.
"""

import sys

from .driver import main
from .errors import DLPError


def _run() -> None:
    try:
        exit_code = main()
    except DLPError as exc:
        print(f"dlpbits: {exc}", file=sys.stderr)
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    _run()
