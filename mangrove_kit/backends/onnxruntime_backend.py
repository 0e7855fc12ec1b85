from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union

import numpy as np


PathLike = Union[str, Path]


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    - providers: ORT execution providers, e.g. ["CPUExecutionProvider"]; None uses ORT's default order
    - channels_first: feed (1, 3, H, W) instead of the NHWC blob, for exports that expect NCHW
    """

    providers: Optional[Sequence[str]] = None
    channels_first: bool = False


class OnnxRuntimeBackend:
    """
    Runs the mangrove detector through an ONNX Runtime session and returns its first output.
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for .onnx models. Install with `pip install onnxruntime`."
            ) from e

        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        self.channels_first = cfg.channels_first
        providers = list(cfg.providers) if cfg.providers is not None else None
        self.session = ort.InferenceSession(str(self.model_path), providers=providers)
        self._input_name = self.session.get_inputs()[0].name

    def infer(self, blob: np.ndarray) -> np.ndarray:
        if self.channels_first:
            blob = np.ascontiguousarray(np.transpose(blob, (0, 3, 1, 2)))
        return self.session.run(None, {self._input_name: blob.astype(np.float32, copy=False)})[0]

    def close(self) -> None:
        # No explicit release in ORT; dropping the session frees it.
        self.session = None
