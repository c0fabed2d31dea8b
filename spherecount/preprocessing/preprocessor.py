"""Image preprocessing: grayscale, blur and adaptive binarization."""

import logging

import cv2
import numpy as np

from spherecount.exceptions import InvalidImage
from spherecount.models import BinaryImage, GrayImage, RasterBuffer

logger = logging.getLogger('spherecount.preprocessing')


def _check_window(name: str, size: int):
    if size < 3 or size % 2 == 0:
        raise ValueError(f"{name} must be an odd integer >= 3, got {size}")


class Preprocessor:
    """Turns an RGBA raster into a foreground mask for circle search."""

    def __init__(self, blur_kernel: int = 7, block_size: int = 11, offset: float = 2):
        """
        Initialize preprocessor.

        Args:
            blur_kernel: Gaussian blur window size (odd)
            block_size: Adaptive threshold neighbourhood size (odd)
            offset: Constant subtracted from the local mean
        """
        _check_window('blur_kernel', blur_kernel)
        _check_window('block_size', block_size)
        self.blur_kernel = blur_kernel
        self.block_size = block_size
        self.offset = offset

    @classmethod
    def from_config(cls, section: dict) -> 'Preprocessor':
        return cls(section['blur_kernel'], section['block_size'], section['offset'])

    def preprocess(self, image: RasterBuffer) -> BinaryImage:
        """
        Apply full preprocessing pipeline.

        Args:
            image: Decoded RGBA raster

        Returns:
            Binary image (255=foreground, 0=background)
        """
        if image.width <= 0 or image.height <= 0:
            raise InvalidImage(f"Degenerate image dimensions {image.width}x{image.height}")

        gray = self.to_grayscale(image)
        blurred = self.blur(gray)
        return self.binarize(blurred)

    def to_grayscale(self, image: RasterBuffer) -> GrayImage:
        """Luma-weighted grayscale, alpha ignored."""
        gray = cv2.cvtColor(image.pixels, cv2.COLOR_RGBA2GRAY)
        return GrayImage(image.width, image.height, gray)

    def blur(self, gray: GrayImage) -> GrayImage:
        """Gaussian smoothing with replicated borders."""
        k = self.blur_kernel
        blurred = cv2.GaussianBlur(gray.pixels, (k, k), 0, borderType=cv2.BORDER_REPLICATE)
        return GrayImage(gray.width, gray.height, blurred)

    def binarize(self, gray: GrayImage) -> BinaryImage:
        """Mark pixels darker than their local mean minus the offset."""
        mask = cv2.adaptiveThreshold(
            gray.pixels,
            255,
            cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
            cv2.THRESH_BINARY_INV,
            self.block_size,
            self.offset
        )
        logger.debug("Binarized %dx%d image, %d foreground pixels",
                     gray.width, gray.height, int(np.count_nonzero(mask)))
        return BinaryImage(gray.width, gray.height, mask, intensity=gray)


# Utility functions for one-off calls
def preprocess(image: RasterBuffer, blur_kernel: int = 7, block_size: int = 11,
               offset: float = 2) -> BinaryImage:
    """Grayscale, blur and binarize `image`."""
    preprocessor = Preprocessor(blur_kernel, block_size, offset)
    return preprocessor.preprocess(image)


def to_grayscale(image: RasterBuffer) -> GrayImage:
    """Luma-weighted grayscale conversion."""
    return Preprocessor().to_grayscale(image)
