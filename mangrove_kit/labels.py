from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Sequence, Union

LOGGER = logging.getLogger(__name__)

DEFAULT_LABELS: Sequence[str] = ("mangrove",)


def _parse_names_mapping(lines: Sequence[str]) -> List[str]:
    """
    Parse the `names:` block of an Ultralytics-style `metadata.yaml`:

        names:
          0: Avicennia marina
          1: Rhizophora apiculata
          ...

    Ids missing from the mapping are filled with "Unknown" so list indices stay aligned.
    """

    names: Dict[int, str] = {}
    in_names = False

    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line == "names:":
            in_names = True
            continue
        if not in_names:
            continue
        # A new top-level key ends the block.
        if not raw.startswith((" ", "\t")):
            break

        if ":" not in line:
            continue
        left, right = line.split(":", 1)
        left = left.strip()
        right = right.strip().strip("'").strip('"')
        if not left.isdigit():
            continue
        names[int(left)] = right

    if not names:
        return []
    return [names.get(i, "Unknown") for i in range(max(names) + 1)]


def read_labels(path: Union[str, Path]) -> List[str]:
    """
    Read class names from `labels.txt` (one per non-blank line) or `metadata.yaml`.
    """

    p = Path(path)
    lines = p.read_text(encoding="utf-8").splitlines()
    if p.suffix.lower() in {".yaml", ".yml"}:
        return _parse_names_mapping(lines)
    return [line.strip() for line in lines if line.strip()]


def load_labels(path: Union[str, Path], default: Sequence[str] = DEFAULT_LABELS) -> List[str]:
    """
    Like `read_labels`, but falls back to `default` when the file is missing, unreadable or empty.
    """

    try:
        labels = read_labels(path)
    except (OSError, UnicodeDecodeError) as exc:
        LOGGER.warning("Could not load labels from %s (%s); using default %s", path, exc, list(default))
        return list(default)
    if not labels:
        LOGGER.warning("Label file %s is empty; using default %s", path, list(default))
        return list(default)
    return labels
