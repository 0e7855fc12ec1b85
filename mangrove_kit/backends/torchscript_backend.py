from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import numpy as np


PathLike = Union[str, Path]


@dataclass(frozen=True)
class TorchScriptBackendConfig:
    device: str = "cpu"
    # Only for exports traced in float16.
    half: bool = False


class TorchScriptBackend:
    """
    `torch.jit.load` backend. Ultralytics TorchScript exports take NCHW, so the NHWC blob
    is permuted on the way in. Tuple outputs are reduced to their first element.
    """

    def __init__(self, model_path: PathLike, cfg: TorchScriptBackendConfig = TorchScriptBackendConfig()):
        try:
            import torch  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError("torch is required for TorchScript models. Install with `pip install torch`.") from e

        self._torch = torch
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        self.device = torch.device(cfg.device)
        self.half = cfg.half
        self.model: Optional[object] = torch.jit.load(str(self.model_path), map_location=self.device).eval()

    def infer(self, blob: np.ndarray) -> np.ndarray:
        torch = self._torch
        x = torch.as_tensor(blob, device=self.device).permute(0, 3, 1, 2).contiguous()
        x = x.half() if self.half else x.float()

        with torch.no_grad():
            y = self.model(x)
        if isinstance(y, (tuple, list)):
            y = y[0]
        return y.detach().float().cpu().numpy()

    def close(self) -> None:
        self.model = None
