"""Error taxonomy for the sphere counting pipeline."""


class SphereCountError(Exception):
    """Base class for all pipeline errors."""


class InvalidImage(SphereCountError, ValueError):
    """Image has degenerate dimensions or could not be decoded."""


class InvalidParams(SphereCountError, ValueError):
    """Detection parameters violate their invariants."""


class DetectionFailed(SphereCountError, RuntimeError):
    """Circle search could not run (allocation, numeric or parameter failure)."""


class RenderFailed(SphereCountError, RuntimeError):
    """Overlay drawing failed."""
