"""Overlay rendering for detected circles."""

import cv2
import numpy as np
from typing import Iterable, Optional, Sequence, Tuple

from spherecount.config import get_section
from spherecount.exceptions import RenderFailed
from spherecount.models import Circle, DetectionResult, RasterBuffer

Color = Tuple[int, int, int, int]


def format_count_label(count: int) -> str:
    """Text shown on the annotated image."""
    return f"Circles: {count}"


def draw_circles(image: np.ndarray, circles: Iterable[Circle],
                 color: Color = (0, 255, 0, 255),
                 center_color: Color = (255, 0, 0, 255),
                 thickness: int = 2, center_radius: int = 2) -> np.ndarray:
    """Draw circle outlines and filled center markers in place."""
    for circle in circles:
        center = (int(round(circle.center_x)), int(round(circle.center_y)))
        cv2.circle(image, center, int(round(circle.radius)), color, thickness)
        cv2.circle(image, center, center_radius, center_color, -1)
    return image


def draw_count_label(image: np.ndarray, count: int,
                     origin: Sequence[int] = (10, 30),
                     color: Color = (255, 255, 255, 255),
                     font_scale: float = 1.0, thickness: int = 2) -> np.ndarray:
    """Draw the circle count label in place."""
    cv2.putText(image, format_count_label(count), (int(origin[0]), int(origin[1])),
                cv2.FONT_HERSHEY_SIMPLEX, font_scale, color, thickness)
    return image


class Renderer:
    """Draws detection results onto a copy of the source raster."""

    def __init__(self, config: Optional[dict] = None):
        section = get_section(config, 'rendering')
        self.circle_color = tuple(section['circle_color'])
        self.center_color = tuple(section['center_color'])
        self.label_color = tuple(section['label_color'])
        self.label_origin = tuple(section['label_origin'])
        self.font_scale = section['font_scale']
        self.thickness = section['thickness']
        self.center_radius = section['center_radius']

    def label_for(self, result: DetectionResult) -> str:
        return format_count_label(result.count)

    def render(self, original: RasterBuffer, result: DetectionResult) -> RasterBuffer:
        """
        Annotate a copy of `original` with `result`.

        Args:
            original: Source raster (left untouched)
            result: Circles to draw

        Returns:
            New annotated raster
        """
        try:
            output = original.copy_pixels()
            draw_circles(output, result.circles, self.circle_color, self.center_color,
                         self.thickness, self.center_radius)
            draw_count_label(output, result.count, self.label_origin, self.label_color,
                             self.font_scale, self.thickness)
        except (MemoryError, cv2.error) as exc:
            raise RenderFailed(f"Failed to draw overlay: {exc}") from exc

        return RasterBuffer(original.width, original.height, output)
