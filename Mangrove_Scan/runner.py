from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from mangrove_kit.errors import MangroveKitError
from mangrove_kit.runtime import load_pipeline

from .config import ScanProfile, load_scan_profile
from .gate import ImaggaTagger, TagGate
from .history import ScanHistory
from .scanner import MangroveScanner, ScanResult, ScanStatus

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 2


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Identify mangrove species in a photo.")
    p.add_argument("image", help="Path to the photo to scan")
    p.add_argument("--model", default="models/best_float32.tflite", help="Model file (.tflite, .onnx, .torchscript)")
    p.add_argument("--labels", default="models/labels.txt", help="labels.txt or metadata.yaml")
    p.add_argument("--backend", choices=("onnxruntime", "torchscript", "tflite"), default=None)
    p.add_argument("--profile", type=Path, default=None, help="Scan profile JSON (thresholds, tiers, gate terms)")
    p.add_argument("--history", type=Path, default=None, help="Append accepted scans to this .jsonl file")
    p.add_argument("--imagga-key", default=os.environ.get("IMAGGA_API_KEY"))
    p.add_argument("--imagga-secret", default=os.environ.get("IMAGGA_API_SECRET"))
    p.add_argument("--no-crop", action="store_true", help="Skip the center square crop")
    p.add_argument("--latitude", type=float, default=None)
    p.add_argument("--longitude", type=float, default=None)
    p.add_argument("--json", action="store_true", help="Print the result as JSON")
    p.add_argument("--log-level", default="WARNING", choices=("DEBUG", "INFO", "WARNING", "ERROR"))
    return p


def result_to_dict(result: ScanResult) -> Dict[str, Any]:
    decision = result.decision
    detections: List[Dict[str, Any]] = [
        {
            "label": d.label,
            "class_id": d.class_id,
            "confidence": d.confidence,
            "box": dict(zip(("left", "top", "right", "bottom"), d.box.as_xyxy())),
        }
        for d in result.detections
    ]
    return {
        "status": result.status.value,
        "image_size": list(result.image_size),
        "tier": decision.tier.value if decision is not None else None,
        "message": decision.message if decision is not None else None,
        "persist": bool(decision.persist) if decision is not None else False,
        "saved_to": str(result.saved_to) if result.saved_to is not None else None,
        "tags": [{"tag": t.tag, "confidence": t.confidence} for t in result.gate.tags],
        "detections": detections,
    }


def _build_gate(args: argparse.Namespace, profile: ScanProfile) -> TagGate:
    if not args.imagga_key or not args.imagga_secret:
        return TagGate(allow_list=profile.gate_allow_list)
    tagger = ImaggaTagger(args.imagga_key, args.imagga_secret, timeout_s=profile.gate_timeout_s)
    return TagGate(tagger, allow_list=profile.gate_allow_list)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        profile = load_scan_profile(args.profile) if args.profile is not None else ScanProfile()
    except (FileNotFoundError, ValueError) as exc:
        print(f"ERROR: could not load scan profile: {exc}", file=sys.stderr)
        return EXIT_ERROR

    try:
        pipeline = load_pipeline(
            args.model,
            labels_path=args.labels,
            backend=args.backend,
            post_cfg=profile.post_config(),
        )
    except (FileNotFoundError, ImportError, ValueError, MangroveKitError) as exc:
        print(f"ERROR: could not load model: {exc}", file=sys.stderr)
        return EXIT_ERROR

    scanner = MangroveScanner(
        pipeline,
        gate=_build_gate(args, profile),
        history=ScanHistory(args.history) if args.history is not None else None,
        cut_points=profile.cut_points(),
        square_crop=not args.no_crop,
    )

    with pipeline:
        try:
            result = scanner.scan(args.image, latitude=args.latitude, longitude=args.longitude)
        except MangroveKitError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return EXIT_ERROR

    if args.json:
        print(json.dumps(result_to_dict(result), indent=2))
    elif result.status is ScanStatus.SKIPPED_BY_GATE:
        print("Image does not appear to contain a tree, leaf, or flower. Skipping species detection.")
    else:
        print(result.decision.message)
        if result.saved_to is not None:
            print(f"Saved to history: {result.saved_to}")
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
