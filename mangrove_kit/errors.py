class MangroveKitError(Exception):
    """Base class for errors raised by mangrove_kit."""


class ImageDecodeError(MangroveKitError, ValueError):
    """The input image could not be read or decoded."""


class ModelNotReadyError(MangroveKitError, RuntimeError):
    """Inference was requested before the engine was loaded or after it was closed."""


class ShapeMismatchError(MangroveKitError, ValueError):
    """The model output does not have the expected (4 + classes) x candidates layout."""


class ModelLoadError(MangroveKitError, RuntimeError):
    """The runtime backend failed to open the model file."""
