"""
DLPBits web panel assets.

Holds the HTML template served by ``dlpbits.web``.
"""

from __future__ import annotations

from pathlib import Path

PACKAGE_ROOT = Path(__file__).resolve().parent
TEMPLATES_DIR = PACKAGE_ROOT / "templates"

__all__ = ["PACKAGE_ROOT", "TEMPLATES_DIR"]
