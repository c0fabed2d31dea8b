"""I/O handling for images and JSON output."""

import cv2
import json
import numpy as np
from pathlib import Path
from typing import Any, Dict, List, Union

from spherecount.exceptions import InvalidImage
from spherecount.models import RasterBuffer

_ALPHA_FORMATS = (".png", ".tif", ".tiff", ".webp")


class JSONWriter:
    """Write detection results to JSON."""

    @staticmethod
    def save_results(output: Union[Dict, List], output_path: str, indent: int = 2):
        """Save results to JSON file."""
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w') as f:
            json.dump(output, f, indent=indent)

    @staticmethod
    def load_results(input_path: str) -> Any:
        """Load results from JSON file."""
        with open(input_path, 'r') as f:
            return json.load(f)


def load_raster(image_path: Union[str, Path]) -> RasterBuffer:
    """Decode an image file into an RGBA raster."""
    image = cv2.imread(str(image_path), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise InvalidImage(f"Failed to load image from {image_path}")

    if image.ndim == 2:
        rgba = cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
    elif image.shape[2] == 4:
        rgba = cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
    else:
        rgba = cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)

    if rgba.dtype == np.uint16:
        rgba = (rgba // 257).astype(np.uint8)
    return RasterBuffer.from_array(rgba)


def save_raster(raster: RasterBuffer, output_path: Union[str, Path]):
    """Encode an RGBA raster to an image file."""
    Path(output_path).parent.mkdir(parents=True, exist_ok=True)
    if Path(output_path).suffix.lower() in _ALPHA_FORMATS:
        encoded = cv2.cvtColor(raster.pixels, cv2.COLOR_RGBA2BGRA)
    else:
        encoded = cv2.cvtColor(raster.pixels, cv2.COLOR_RGBA2BGR)
    if not cv2.imwrite(str(output_path), encoded):
        raise IOError(f"Failed to write image to {output_path}")
