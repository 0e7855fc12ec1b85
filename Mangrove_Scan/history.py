"""
Scan history: one JSON object per accepted scan, appended to a `.jsonl` file.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from mangrove_kit.types import Detection

from .policy import ScanDecision

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanRecord:
    label: str
    confidence: float
    tier: str
    box: Dict[str, float]
    scanned_at: str
    image: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "label": self.label,
            "confidence": self.confidence,
            "tier": self.tier,
            "box": self.box,
            "scanned_at": self.scanned_at,
        }
        if self.image is not None:
            payload["image"] = self.image
        if self.latitude is not None and self.longitude is not None:
            payload["latitude"] = self.latitude
            payload["longitude"] = self.longitude
        return payload


def utc_now_str() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def record_from_decision(
    decision: ScanDecision,
    *,
    image: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    scanned_at: Optional[str] = None,
) -> ScanRecord:
    det: Optional[Detection] = decision.detection
    if det is None:
        raise ValueError(f"Decision with tier {decision.tier.value!r} has no detection to record")
    return ScanRecord(
        label=det.label,
        confidence=round(float(det.confidence), 6),
        tier=decision.tier.value,
        box={
            "left": float(det.box.left),
            "top": float(det.box.top),
            "right": float(det.box.right),
            "bottom": float(det.box.bottom),
        },
        scanned_at=scanned_at or utc_now_str(),
        image=image,
        latitude=latitude,
        longitude=longitude,
    )


class ScanHistory:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def append(self, record: ScanRecord) -> Path:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record.to_dict(), sort_keys=True) + "\n")
        LOGGER.info("Scan saved to history: %s (%.1f%%)", record.label, record.confidence * 100)
        return self.path

    def read_all(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        records: List[Dict[str, Any]] = []
        with self.path.open("r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError as exc:
                    raise ValueError(f"Invalid history line {lineno} in {self.path}") from exc
        return records
