"""
Data model for the sphere counting pipeline
Immutable image buffers, detection parameters and detection results
"""

import math
from dataclasses import dataclass, field, asdict, replace as dataclass_replace
from typing import Any, Dict, Tuple

import numpy as np

from spherecount.exceptions import InvalidImage, InvalidParams


def _readonly(array: np.ndarray, copy: bool = False) -> np.ndarray:
    """Return a C-contiguous, read-only view (or copy) of `array`."""
    array = np.array(array, copy=True) if copy else np.ascontiguousarray(array).view()
    array.flags.writeable = False
    return array


def _check_dimensions(width: int, height: int):
    if width <= 0 or height <= 0:
        raise InvalidImage(f"Degenerate image dimensions {width}x{height}")


@dataclass(frozen=True, eq=False)
class RasterBuffer:
    """
    Decoded RGBA image, row-major, 8 bits per channel.

    Buffers compare by identity; use `np.array_equal` on `pixels` for content.
    """
    width: int
    height: int
    pixels: np.ndarray = field(repr=False)

    def __post_init__(self):
        _check_dimensions(self.width, self.height)
        pixels = np.asarray(self.pixels)
        if pixels.dtype != np.uint8:
            raise InvalidImage(f"Expected uint8 samples, got {pixels.dtype}")
        if pixels.shape != (self.height, self.width, 4):
            raise InvalidImage(
                f"Pixel array shape {pixels.shape} does not match "
                f"{self.width}x{self.height} RGBA"
            )
        object.__setattr__(self, 'pixels', _readonly(pixels, copy=True))

    @classmethod
    def from_array(cls, array: np.ndarray) -> 'RasterBuffer':
        """
        Build a raster from a gray, RGB or RGBA array.

        Args:
            array: uint8 array of shape (H, W), (H, W, 3) or (H, W, 4)

        Returns:
            RasterBuffer holding an RGBA copy of the data
        """
        array = np.asarray(array)
        if array.ndim < 2 or array.shape[0] == 0 or array.shape[1] == 0:
            raise InvalidImage(f"Cannot build raster from array of shape {array.shape}")
        if array.dtype != np.uint8:
            raise InvalidImage(f"Expected uint8 samples, got {array.dtype}")

        height, width = array.shape[:2]
        if array.ndim == 2:
            rgba = np.empty((height, width, 4), dtype=np.uint8)
            rgba[..., :3] = array[..., None]
            rgba[..., 3] = 255
        elif array.shape[2] == 3:
            rgba = np.empty((height, width, 4), dtype=np.uint8)
            rgba[..., :3] = array
            rgba[..., 3] = 255
        elif array.shape[2] == 4:
            rgba = array.copy()
        else:
            raise InvalidImage(f"Unsupported channel count {array.shape[2]}")

        return cls(width=width, height=height, pixels=rgba)

    def copy_pixels(self) -> np.ndarray:
        """Writable copy of the pixel data."""
        return self.pixels.copy()


@dataclass(frozen=True, eq=False)
class GrayImage:
    """Single channel 8-bit intensity image."""
    width: int
    height: int
    pixels: np.ndarray = field(repr=False)

    def __post_init__(self):
        _check_dimensions(self.width, self.height)
        object.__setattr__(self, 'pixels', _readonly(self.pixels))


@dataclass(frozen=True, eq=False)
class BinaryImage:
    """Foreground (255) / background (0) mask with the intensity it came from."""
    width: int
    height: int
    pixels: np.ndarray = field(repr=False)
    intensity: GrayImage = field(repr=False)

    def __post_init__(self):
        _check_dimensions(self.width, self.height)
        object.__setattr__(self, 'pixels', _readonly(self.pixels))

    @property
    def foreground_count(self) -> int:
        return int(np.count_nonzero(self.pixels))


@dataclass(frozen=True)
class DetectionParams:
    """Immutable snapshot of the Hough search parameters."""
    min_dist: float = 10
    param1: float = 100
    param2: float = 20
    min_radius: int = 3
    max_radius: int = 50

    FIELDS = ('min_dist', 'param1', 'param2', 'min_radius', 'max_radius')

    def validate(self) -> 'DetectionParams':
        """
        Check parameter invariants.

        Returns:
            self, so calls can be chained

        Raises:
            InvalidParams: if any invariant is violated
        """
        for name in self.FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
                raise InvalidParams(f"{name} must be numeric, got {value!r}")
            if not math.isfinite(value):
                raise InvalidParams(f"{name} must be finite, got {value!r}")

        for name in ('min_dist', 'param1', 'param2', 'max_radius'):
            if getattr(self, name) <= 0:
                raise InvalidParams(f"{name} must be positive, got {getattr(self, name)!r}")

        for name in ('min_radius', 'max_radius'):
            value = getattr(self, name)
            if int(value) != value:
                raise InvalidParams(f"{name} must be an integer, got {value!r}")

        if self.min_radius < 0:
            raise InvalidParams(f"min_radius must be non-negative, got {self.min_radius!r}")
        if self.min_radius > self.max_radius:
            raise InvalidParams(
                f"min_radius ({self.min_radius}) exceeds max_radius ({self.max_radius})"
            )
        return self

    def replace(self, **changes) -> 'DetectionParams':
        return dataclass_replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> 'DetectionParams':
        return cls(**{name: values[name] for name in cls.FIELDS if name in values})


@dataclass(frozen=True)
class Circle:
    """A detected circle; `votes` is the support of its best radius bin."""
    center_x: float
    center_y: float
    radius: float
    votes: int

    def distance_to(self, other: 'Circle') -> float:
        return math.hypot(self.center_x - other.center_x, self.center_y - other.center_y)


@dataclass(frozen=True)
class DetectionResult:
    """Accepted circles in descending vote order."""
    circles: Tuple[Circle, ...] = ()

    @property
    def count(self) -> int:
        return len(self.circles)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'count': self.count,
            'circles': [
                {
                    'center_x': round(c.center_x, 2),
                    'center_y': round(c.center_y, 2),
                    'radius': round(c.radius, 2),
                    'votes': c.votes,
                }
                for c in self.circles
            ],
        }
