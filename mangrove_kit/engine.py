from __future__ import annotations

import logging
from typing import Any, Callable, Optional

import numpy as np

from .errors import MangroveKitError, ModelLoadError, ModelNotReadyError

LOGGER = logging.getLogger(__name__)


class InferenceEngine:
    """
    Explicitly owned inference resource: `load()` once, `infer()` any number of times, `close()`.

    `factory` builds the runtime backend (anything with an `infer(blob) -> ndarray` method and an
    optional `close()`); it is only called by `load()`, so constructing an engine is cheap.
    Backend errors other than a missing file or runtime package surface as `ModelLoadError`.

    The engine has no internal locking. Callers must not run two `infer` calls at once.
    """

    def __init__(self, factory: Callable[[], Any], *, name: Optional[str] = None):
        self._factory = factory
        self._backend: Optional[Any] = None
        self.name = name or getattr(factory, "__name__", "backend")

    @property
    def is_ready(self) -> bool:
        return self._backend is not None

    @property
    def backend(self) -> Any:
        if self._backend is None:
            raise ModelNotReadyError(f"Inference engine '{self.name}' is not loaded. Call load() first.")
        return self._backend

    def load(self) -> "InferenceEngine":
        if self._backend is not None:
            return self
        LOGGER.info("Loading inference engine %s", self.name)
        try:
            self._backend = self._factory()
        except (FileNotFoundError, ImportError, MangroveKitError):
            raise
        except Exception as exc:
            raise ModelLoadError(f"Inference engine '{self.name}' failed to load: {exc}") from exc
        return self

    def infer(self, blob: np.ndarray) -> np.ndarray:
        return np.asarray(self.backend.infer(blob))

    def close(self) -> None:
        backend, self._backend = self._backend, None
        if backend is None:
            return
        close = getattr(backend, "close", None)
        if callable(close):
            close()
        LOGGER.info("Closed inference engine %s", self.name)

    def __enter__(self) -> "InferenceEngine":
        return self.load()

    def __exit__(self, *exc: object) -> None:
        self.close()
