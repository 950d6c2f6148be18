"""
Helper utilities for turning images into plain-text pixel maps.

Every transform deletes the previous output file, records telemetry against the
untouched source image, resizes to a fixed 250x250 grid and writes the rendered
text as UTF-8 in one shot.
"""

from __future__ import annotations

import logging
import math
from io import BytesIO, StringIO
from pathlib import Path
from typing import BinaryIO, Callable, Dict, List, Tuple, Union, TYPE_CHECKING

import numpy as np
from PIL import Image

if TYPE_CHECKING:
    from telemetry import TelemetryCache

logger = logging.getLogger("ppm_utils")

Weights = Tuple[float, float, float]
PixelRows = List[List[List[int]]]
ImageSource = Union[str, Path, bytes, "Image.Image", BinaryIO]

TARGET_SIZE: Tuple[int, int] = (250, 250)
MAX_CHANNEL_VALUE = 255
OUTPUT_PATH = Path("out.ppm")
BULK_RUNS = 256

# The blue weight pushes white pixels past 255; CORRECTED_WEIGHTS sum to 1.0.
DEFAULT_WEIGHTS: Weights = (0.3, 0.59, 1.11)
CORRECTED_WEIGHTS: Weights = (0.3, 0.59, 0.11)


class LuminanceOverflowError(OverflowError):
    """A weighted greyscale sum does not fit in an unsigned byte."""

    def __init__(self, rgb: Tuple[int, int, int], weighted_sum: float):
        self.rgb = rgb
        self.weighted_sum = weighted_sum
        super().__init__(
            f"Luminance {weighted_sum:.2f} for pixel {rgb} is outside 0-{MAX_CHANNEL_VALUE}"
        )


def open_image(source: ImageSource) -> Image.Image:
    """
    Open an image from the supported source types.

    `source` can be one of:
      - str or pathlib.Path pointing to an image on disk
      - bytes containing the encoded image
      - PIL Image instance (a copy is returned so callers may close it)
      - file-like object providing a `.read()` method
    """
    if isinstance(source, Image.Image):
        return source.copy()

    if isinstance(source, (str, Path)):
        return Image.open(source)

    if isinstance(source, bytes):
        return Image.open(BytesIO(source))

    seek = getattr(source, "seek", None)
    if callable(seek):
        seek(0)
    return Image.open(source)


def prepare_image(image: Image.Image, size: Tuple[int, int] = TARGET_SIZE) -> Image.Image:
    """Drop alpha and stretch to `size`; aspect ratio is not kept."""
    return image.convert("RGB").resize(size, Image.BICUBIC)


def _pixel_rows(image: Image.Image) -> PixelRows:
    return np.asarray(image, dtype=np.uint8).tolist()


def _header(width: int, height: int) -> str:
    return f"P3\n{width} {height}\n{MAX_CHANNEL_VALUE}\n"


def render_ppm(image: Image.Image) -> str:
    width, height = image.size
    buffer = StringIO()
    buffer.write(_header(width, height))
    for row in _pixel_rows(image):
        for red, green, blue in row:
            buffer.write(f"{red} {green} {blue} ")
        buffer.write("\n")
    return buffer.getvalue()


def render_ppm_slow(image: Image.Image) -> str:
    """Same output as `render_ppm`, but copies the whole text on every pixel."""
    width, height = image.size
    text = ""
    text = f"{text}P3\n"
    text = f"{text}{width} {height}\n"
    text = f"{text}{MAX_CHANNEL_VALUE}\n"
    for row in _pixel_rows(image):
        for red, green, blue in row:
            text = f"{text}{red} {green} {blue} "
        text = f"{text}\n"
    return text


def luminance(red: int, green: int, blue: int, weights: Weights = DEFAULT_WEIGHTS) -> int:
    weight_red, weight_green, weight_blue = weights
    weighted_sum = weight_red * red + weight_green * green + weight_blue * blue
    if not math.isfinite(weighted_sum):
        raise LuminanceOverflowError((red, green, blue), weighted_sum)
    value = round(weighted_sum)
    if value < 0 or value > MAX_CHANNEL_VALUE:
        raise LuminanceOverflowError((red, green, blue), weighted_sum)
    return value


def render_greyscale(image: Image.Image, weights: Weights = DEFAULT_WEIGHTS) -> str:
    width, height = image.size
    buffer = StringIO()
    buffer.write(_header(width, height))
    for row in _pixel_rows(image):
        for red, green, blue in row:
            value = luminance(red, green, blue, weights)
            buffer.write(f"{value} {value} {value} ")
        buffer.write("\n")
    return buffer.getvalue()


RENDERERS: Dict[str, Callable[[Image.Image], str]] = {
    "ppm": render_ppm,
    "ppm-slow": render_ppm_slow,
}
TRANSFORMS = ("ppm", "ppm-slow", "ppm-bulk", "greyscale")


def write_output(text: str, output_path: Union[str, Path] = OUTPUT_PATH) -> None:
    Path(output_path).write_bytes(text.encode("utf-8"))


def apply_transform(
    source: ImageSource,
    transform: str,
    cache: "TelemetryCache",
    *,
    weights: Weights = DEFAULT_WEIGHTS,
    output_path: Union[str, Path] = OUTPUT_PATH,
) -> None:
    """
    Run one named transform against `source` and write the pixel map.

    One telemetry record is added per rendered image, so `ppm-bulk` adds
    `BULK_RUNS` records. `LuminanceOverflowError` propagates to the caller;
    in that case the record stays in the cache and no output file is left.
    """
    transform = transform.lower()
    if transform not in TRANSFORMS:
        raise ValueError(f"Unknown transform: {transform!r}")

    if transform == "ppm-bulk":
        for _ in range(BULK_RUNS):
            apply_transform(source, "ppm", cache, weights=weights, output_path=output_path)
        return

    output_path = Path(output_path)
    if output_path.exists():
        output_path.unlink()

    with open_image(source) as image:
        cache.add_telemetry(image, transform)
        logger.debug("Running %s on %s image of size %s", transform, image.mode, image.size)
        prepared = prepare_image(image)

    if transform == "greyscale":
        text = render_greyscale(prepared, weights)
    else:
        text = RENDERERS[transform](prepared)

    write_output(text, output_path)
