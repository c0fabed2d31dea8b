"""
pytest configuration
Shared synthetic images and parameter fixtures
"""

import cv2
import numpy as np
import pytest

from spherecount.models import DetectionParams, RasterBuffer


def make_disk_image(width=200, height=160, centers=((50, 80), (150, 80)), radius=20,
                    background=255, foreground=0):
    """Dark filled disks on a bright background, as an RGBA raster."""
    image = np.full((height, width, 3), background, dtype=np.uint8)
    for center in centers:
        cv2.circle(image, center, radius, (foreground, foreground, foreground), -1)
    return RasterBuffer.from_array(image)


@pytest.fixture
def two_disk_image():
    """Two radius-20 disks with centers 100px apart."""
    return make_disk_image()


@pytest.fixture
def blank_image():
    return make_disk_image(centers=())


@pytest.fixture
def default_params():
    return DetectionParams(min_dist=10, param1=100, param2=20, min_radius=3, max_radius=50)


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: mark test as slow running")
