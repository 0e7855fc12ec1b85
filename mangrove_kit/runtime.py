from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Union

import numpy as np

from .engine import InferenceEngine
from .errors import ModelNotReadyError
from .labels import DEFAULT_LABELS, load_labels
from .postprocess import MangrovePostprocessor, PostConfig
from .preprocess import to_input_tensor
from .types import Detection


PathLike = Union[str, Path]


def _project_root() -> Path:
    # Nearest parent of the cwd holding pyproject.toml or .git; the cwd itself otherwise.
    cwd = Path.cwd().resolve()
    for parent in (cwd, *cwd.parents):
        if (parent / "pyproject.toml").exists() or (parent / ".git").exists():
            return parent
    return cwd


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Absolute paths pass through. Relative ones (`models/best_float32.tflite`) resolve against
    `root`, or against the project root when `root` is "auto" or None.
    """

    p = Path(path)
    if p.is_absolute():
        return p
    base = _project_root() if root in ("auto", None) else Path(root).resolve()
    return (base / p).resolve()


class MangrovePipeline:
    """
    Preprocess -> inference -> post-process for one image at a time.

    Takes BGR images (OpenCV-style) and returns detections in that image's pixel space.
    The pipeline owns its `InferenceEngine`; `load()` / `close()` (or `with`) control it.
    """

    def __init__(
        self,
        engine: InferenceEngine,
        *,
        labels: Optional[Sequence[str]] = None,
        post_cfg: PostConfig = PostConfig(),
    ):
        self.engine = engine
        self.labels: List[str] = list(labels) if labels is not None else []
        self.post_cfg = post_cfg
        self.post = MangrovePostprocessor(post_cfg, self.labels)

    @property
    def is_ready(self) -> bool:
        return self.engine.is_ready

    def load(self) -> "MangrovePipeline":
        self.engine.load()
        return self

    def close(self) -> None:
        self.engine.close()

    def __enter__(self) -> "MangrovePipeline":
        return self.load()

    def __exit__(self, *exc: object) -> None:
        self.close()

    def preprocess(self, image_bgr: np.ndarray) -> np.ndarray:
        return to_input_tensor(image_bgr, self.post_cfg.input_size)

    def __call__(self, image_bgr: np.ndarray) -> List[Detection]:
        if not self.engine.is_ready:
            raise ModelNotReadyError("Model not loaded. Call load() before running detection.")
        blob = self.preprocess(image_bgr)
        preds = self.engine.infer(blob)
        h, w = image_bgr.shape[:2]
        return self.post.process(preds, image_size=(w, h))


def infer_backend_name(model_path: PathLike) -> str:
    suffix = Path(model_path).suffix.lower()
    if suffix == ".onnx":
        return "onnxruntime"
    if suffix == ".tflite":
        return "tflite"
    if suffix in {".torchscript", ".ts", ".pt"}:
        return "torchscript"
    raise ValueError(f"Could not infer backend from extension '{suffix}'. Pass backend=... explicitly.")


def backend_factory(
    model_path: PathLike,
    backend: str,
    *,
    onnx_providers: Optional[Sequence[str]] = None,
    onnx_channels_first: bool = False,
    torch_device: str = "cpu",
    torch_half: bool = False,
    tflite_threads: Optional[int] = None,
) -> Callable[[], Any]:
    """
    Return a zero-argument callable that builds the runtime backend. Nothing is imported
    or loaded until the callable runs.
    """

    chosen = backend.lower()
    if chosen == "onnxruntime":

        def make_onnxruntime() -> Any:
            from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

            return OnnxRuntimeBackend(
                model_path,
                OnnxRuntimeBackendConfig(providers=onnx_providers, channels_first=onnx_channels_first),
            )

        return make_onnxruntime

    if chosen == "torchscript":

        def make_torchscript() -> Any:
            from .backends.torchscript_backend import TorchScriptBackend, TorchScriptBackendConfig

            return TorchScriptBackend(model_path, TorchScriptBackendConfig(device=torch_device, half=torch_half))

        return make_torchscript

    if chosen == "tflite":

        def make_tflite() -> Any:
            from .backends.tflite_backend import TfliteBackend, TfliteBackendConfig

            return TfliteBackend(model_path, TfliteBackendConfig(num_threads=tflite_threads))

        return make_tflite

    raise ValueError(f"Unsupported backend: {backend!r}")


def load_pipeline(
    model_path: PathLike,
    *,
    labels_path: Optional[PathLike] = None,
    backend: Optional[str] = None,
    root: Optional[PathLike] = "auto",
    post_cfg: PostConfig = PostConfig(),
    load: bool = True,
    **backend_options: Any,
) -> MangrovePipeline:
    """
    Create a pipeline for a model on disk.

        pipe = load_pipeline("models/best_float32.tflite", labels_path="models/labels.txt")

    Args:
        model_path: relative paths resolve against the project root by default
        labels_path: labels.txt / metadata.yaml; None or an unreadable file gives ["mangrove"]
        backend: "onnxruntime", "torchscript" or "tflite"; None infers it from the extension
        load: load the model now; pass False to defer to `pipeline.load()`
        backend_options: forwarded to `backend_factory` (onnx_providers, torch_device, ...)
    """

    resolved = resolve_path(model_path, root=root)
    chosen = backend or infer_backend_name(resolved)
    labels = load_labels(resolve_path(labels_path, root=root)) if labels_path is not None else list(DEFAULT_LABELS)

    engine = InferenceEngine(backend_factory(resolved, chosen, **backend_options), name=f"{chosen}:{resolved.name}")
    pipeline = MangrovePipeline(engine, labels=labels, post_cfg=post_cfg)
    return pipeline.load() if load else pipeline
