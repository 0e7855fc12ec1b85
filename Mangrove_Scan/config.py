from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Tuple

from mangrove_kit.postprocess import PostConfig

from .gate import DEFAULT_ALLOW_LIST
from .policy import TierCutPoints


@dataclass(frozen=True)
class ScanProfile:
    schema_version: int = 1
    input_size: int = 640
    num_classes: int = 15
    num_candidates: int = 8400
    confidence_threshold: float = 0.5
    iou_threshold: float = 0.5
    normalized_cutoff: float = 1.5
    tier_high: float = 0.80
    tier_medium: float = 0.65
    tier_low: float = 0.50
    gate_allow_list: Tuple[str, ...] = tuple(DEFAULT_ALLOW_LIST)
    gate_timeout_s: float = 10.0

    def __post_init__(self) -> None:
        if self.schema_version != 1:
            raise ValueError("scan profile schema_version must be 1")
        if self.input_size <= 0:
            raise ValueError("input_size must be > 0")
        if self.num_classes <= 0:
            raise ValueError("num_classes must be > 0")
        if self.num_candidates <= 0:
            raise ValueError("num_candidates must be > 0")
        for key in ("confidence_threshold", "iou_threshold"):
            value = getattr(self, key)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{key} must be in [0, 1]")
        if self.normalized_cutoff <= 0:
            raise ValueError("normalized_cutoff must be > 0")
        if not 0.0 <= self.tier_low <= self.tier_medium <= self.tier_high <= 1.0:
            raise ValueError("tier cut points must satisfy 0 <= tier_low <= tier_medium <= tier_high <= 1")
        if not self.gate_allow_list:
            raise ValueError("gate_allow_list must not be empty")
        if self.gate_timeout_s <= 0:
            raise ValueError("gate_timeout_s must be > 0")

    def post_config(self) -> PostConfig:
        return PostConfig(
            input_size=self.input_size,
            num_classes=self.num_classes,
            num_candidates=self.num_candidates,
            confidence_threshold=self.confidence_threshold,
            iou_threshold=self.iou_threshold,
            normalized_cutoff=self.normalized_cutoff,
        )

    def cut_points(self) -> TierCutPoints:
        return TierCutPoints(high=self.tier_high, medium=self.tier_medium, low=self.tier_low)


_INT_KEYS = ("schema_version", "input_size", "num_classes", "num_candidates")
_FLOAT_KEYS = (
    "confidence_threshold",
    "iou_threshold",
    "normalized_cutoff",
    "tier_high",
    "tier_medium",
    "tier_low",
    "gate_timeout_s",
)


def _require_number(payload: Dict[str, Any], key: str) -> float:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _require_int(payload: Dict[str, Any], key: str) -> int:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _require_str_list(payload: Dict[str, Any], key: str) -> Tuple[str, ...]:
    value = payload[key]
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"{key} must be a list of strings")
    cleaned = tuple(item.strip().lower() for item in value)
    if any(not item for item in cleaned):
        raise ValueError(f"{key} must not contain empty strings")
    return cleaned


def scan_profile_from_dict(payload: Dict[str, Any]) -> ScanProfile:
    allowed = set(_INT_KEYS) | set(_FLOAT_KEYS) | {"gate_allow_list", "notes"}
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown scan profile keys: {unknown}")

    kwargs: Dict[str, Any] = {}
    for key in _INT_KEYS:
        if key in payload:
            kwargs[key] = _require_int(payload, key)
    for key in _FLOAT_KEYS:
        if key in payload:
            kwargs[key] = _require_number(payload, key)
    if "gate_allow_list" in payload:
        kwargs["gate_allow_list"] = _require_str_list(payload, "gate_allow_list")

    notes = payload.get("notes")
    if notes is not None and not isinstance(notes, str):
        raise ValueError("notes must be a string if provided")

    return ScanProfile(**kwargs)


def load_scan_profile(path: Path) -> ScanProfile:
    if not path.exists():
        raise FileNotFoundError(f"Scan profile not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid scan profile JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Scan profile must be a JSON object")
    return scan_profile_from_dict(payload)
