"""
Parameter input boundary
Coerces raw UI values into DetectionParams, falling back to the last valid value
"""

import logging
import math
import re
from typing import Any, Dict, Mapping, Optional

from spherecount.exceptions import InvalidParams
from spherecount.models import DetectionParams

logger = logging.getLogger('spherecount.params')

_LEADING_INT = re.compile(r'\s*([+-]?\d+)')


def coerce_int(raw: Any) -> Optional[int]:
    """
    Parse a UI entry as an integer.

    Strings yield their leading integer ("12px" -> 12, "7.9" -> 7).
    Returns None for empty, unparseable or non-finite entries.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        return int(raw) if math.isfinite(raw) else None
    match = _LEADING_INT.match(str(raw))
    return int(match.group(1)) if match else None


class ParameterInput:
    """Holds the last-known-good DetectionParams and applies field edits to it."""

    def __init__(self, initial: Optional[DetectionParams] = None):
        self._current = (initial or DetectionParams()).validate()

    @property
    def current(self) -> DetectionParams:
        return self._current

    def update(self, name: str, raw: Any) -> DetectionParams:
        """
        Apply one field edit.

        Args:
            name: DetectionParams field name
            raw: Raw entry from the UI

        Returns:
            The resulting valid parameter snapshot
        """
        if name not in DetectionParams.FIELDS:
            raise KeyError(f"Unknown detection parameter: {name}")

        value = coerce_int(raw)
        if value is None:
            logger.warning("Ignoring unparseable %s entry %r, keeping %s",
                           name, raw, getattr(self._current, name))
            return self._current

        try:
            candidate = self._current.replace(**{name: value}).validate()
        except InvalidParams as exc:
            logger.warning("Rejected %s=%r (%s), keeping %s",
                           name, raw, exc, getattr(self._current, name))
            return self._current

        self._current = candidate
        return candidate

    def update_many(self, values: Mapping[str, Any]) -> DetectionParams:
        """Apply several field edits in order; each falls back independently."""
        for name, raw in values.items():
            self.update(name, raw)
        return self._current

    def replace(self, params: DetectionParams) -> DetectionParams:
        """Adopt a whole snapshot, or as many of its fields as stay valid."""
        try:
            self._current = params.validate()
        except InvalidParams as exc:
            logger.warning("Rejected parameter snapshot (%s), applying fields individually", exc)
            return self.update_many(params.to_dict())
        return self._current

    def to_dict(self) -> Dict[str, Any]:
        return self._current.to_dict()
