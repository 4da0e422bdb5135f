#!/usr/bin/env python3
"""
Write the JSON schema of every public model to a directory.

Usage:
  PYTHONPATH=. python3 scripts/export_schemas.py [target_dir]
"""

import sys
from pathlib import Path

from libs.core.schemas import export_schemas


def main() -> None:
    target = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("schemas")
    for path in export_schemas(target):
        print(f"Wrote {path}")


if __name__ == "__main__":
    main()
