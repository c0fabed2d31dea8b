"""
SphereCount - circle counting for uploaded photos

Detects circular objects with a gradient Hough transform and keeps an
annotated preview in sync with the latest image and parameters.
"""

from .core import PipelineOrchestrator, PipelineState, PipelineStatus, Publication
from .models import Circle, DetectionParams, DetectionResult, RasterBuffer

__all__ = [
    'PipelineOrchestrator',
    'PipelineState',
    'PipelineStatus',
    'Publication',
    'Circle',
    'DetectionParams',
    'DetectionResult',
    'RasterBuffer',
]
__version__ = '1.0.0'
