"""
Scan layer built on top of `mangrove_kit`.

Detection itself stays in `mangrove_kit`; this package adds what a scan needs around it:
- tag gate (skip photos the tagging service does not see as plants)
- confidence tiers (HIGH / MEDIUM / LOW / REJECTED) and what each one allows
- scan history persistence
- the scanner that runs one request at a time, and its command line runner
"""

from __future__ import annotations

from .config import ScanProfile, load_scan_profile, scan_profile_from_dict
from .gate import GateResult, ImaggaTagger, Tag, TagGate, TaggingError, parse_imagga_tags
from .history import ScanHistory, ScanRecord, record_from_decision
from .policy import ConfidenceTier, ScanDecision, TierCutPoints, classify_confidence, decide
from .scanner import MangroveScanner, ScanResult, ScanStatus, ScannerBusyError

__all__ = [
    "ScanProfile",
    "load_scan_profile",
    "scan_profile_from_dict",
    "GateResult",
    "ImaggaTagger",
    "Tag",
    "TagGate",
    "TaggingError",
    "parse_imagga_tags",
    "ScanHistory",
    "ScanRecord",
    "record_from_decision",
    "ConfidenceTier",
    "ScanDecision",
    "TierCutPoints",
    "classify_confidence",
    "decide",
    "MangroveScanner",
    "ScanResult",
    "ScanStatus",
    "ScannerBusyError",
]
