from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import numpy as np


PathLike = Union[str, Path]


@dataclass(frozen=True)
class TfliteBackendConfig:
    # None lets TensorFlow pick the interpreter thread count.
    num_threads: Optional[int] = None


class TfliteBackend:
    """
    TensorFlow Lite backend for `best_float32.tflite` style exports.

    Input is the NHWC float32 blob (1, 640, 640, 3); output is (1, 4 + C, N).
    """

    def __init__(self, model_path: PathLike, cfg: TfliteBackendConfig = TfliteBackendConfig()):
        try:
            import tensorflow as tf  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError("tensorflow is required for the TFLite backend. Install with `pip install tensorflow`.") from e

        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        self.interpreter = tf.lite.Interpreter(model_path=str(self.model_path), num_threads=cfg.num_threads)
        self.interpreter.allocate_tensors()

        self._input = self.interpreter.get_input_details()[0]
        self._output = self.interpreter.get_output_details()[0]

    def infer(self, blob: np.ndarray) -> np.ndarray:
        self.interpreter.set_tensor(self._input["index"], blob.astype(np.float32, copy=False))
        self.interpreter.invoke()
        # get_tensor returns a copy, safe to hand out after the next invoke().
        return self.interpreter.get_tensor(self._output["index"])

    def close(self) -> None:
        self.interpreter = None
