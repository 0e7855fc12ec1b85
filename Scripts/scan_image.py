from __future__ import annotations

import sys
from pathlib import Path

# Allow `python Scripts/scan_image.py ...` from a checkout without installing the package.
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from Mangrove_Scan.runner import main  # noqa: E402


if __name__ == "__main__":
    raise SystemExit(main())
