"""Live room captioning server."""

from pathlib import Path

PACKAGE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = PACKAGE_DIR.parent

__all__ = ["PACKAGE_DIR", "PROJECT_ROOT"]
