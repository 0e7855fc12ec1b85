from __future__ import annotations

from pathlib import Path
from typing import Union

import numpy as np

from .errors import ImageDecodeError

try:
    import cv2  # type: ignore
except Exception as e:  # pragma: no cover
    raise ImportError("OpenCV is required for preprocessing. Install with `pip install opencv-python`.") from e


PathLike = Union[str, Path]


def decode_image(data: bytes) -> np.ndarray:
    """
    Decode encoded image bytes (JPEG/PNG/...) into a BGR array.

    OpenCV applies the EXIF orientation tag while decoding, so camera captures come out upright.
    """

    if not data:
        raise ImageDecodeError("Empty image buffer")
    buf = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    if image is None:
        raise ImageDecodeError("Cannot decode image")
    return image


def read_image(path: PathLike) -> np.ndarray:
    p = Path(path)
    try:
        data = p.read_bytes()
    except OSError as e:
        raise ImageDecodeError(f"Could not read image at path: {p}") from e
    return decode_image(data)


def encode_jpeg(image: np.ndarray, quality: int = 95) -> bytes:
    ok, buf = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise ImageDecodeError("Could not encode image as JPEG")
    return buf.tobytes()


def center_crop_square(image: np.ndarray, size: int = 640) -> np.ndarray:
    """
    Resize the short side to `size`, then crop the long side around the center.

    Landscape images are scaled by height and cropped horizontally; portrait and square
    images are scaled by width and cropped vertically.
    """

    if image.ndim != 3 or image.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {image.shape}")

    h, w = image.shape[:2]
    if w > h:
        new_w, new_h = int(round(w * size / h)), size
    else:
        new_w, new_h = size, int(round(h * size / w))

    if (w, h) != (new_w, new_h):
        image = cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_LINEAR)

    x0 = (new_w - size) // 2
    y0 = (new_h - size) // 2
    return np.ascontiguousarray(image[y0 : y0 + size, x0 : x0 + size])


def to_input_tensor(image_bgr: np.ndarray, input_size: int = 640) -> np.ndarray:
    """
    Stretch to `input_size` x `input_size`, convert BGR -> RGB and scale to [0, 1].

    Returns a float32 NHWC tensor shaped (1, input_size, input_size, 3).
    """

    if image_bgr is None or not hasattr(image_bgr, "shape"):
        raise TypeError("image_bgr must be a NumPy array (BGR).")
    if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")

    h, w = image_bgr.shape[:2]
    if (w, h) != (input_size, input_size):
        image_bgr = cv2.resize(image_bgr, (input_size, input_size), interpolation=cv2.INTER_LINEAR)

    blob = image_bgr[:, :, ::-1].astype(np.float32) / 255.0
    return blob[None, ...]
