"""Circle detection using a two-stage gradient Hough transform."""

import logging
from typing import List, NamedTuple, Optional, Tuple

import cv2
import numpy as np
from scipy.ndimage import maximum_filter

from spherecount.exceptions import DetectionFailed, InvalidParams
from spherecount.models import BinaryImage, Circle, DetectionParams, DetectionResult

logger = logging.getLogger('spherecount.detection')


class EdgePoints(NamedTuple):
    """
    Edge pixel coordinates with unit gradient directions, in row-major order.

    `rim` flags points whose gradient magnitude peaks within the foreground
    band along their gradient line.
    """
    xs: np.ndarray
    ys: np.ndarray
    ux: np.ndarray
    uy: np.ndarray
    rim: np.ndarray

    def __len__(self):
        return len(self.xs)

    def select(self, mask: np.ndarray) -> 'EdgePoints':
        """Subset of points, keeping row-major order."""
        return EdgePoints(*(values[mask] for values in self))


class Candidate(NamedTuple):
    scan_index: int
    x: int
    y: int
    votes: int


class CircleDetector:
    """Finds circle centers by gradient voting, then their radii by distance histograms."""

    def __init__(self, center_vote_ratio: float = 0.5, radius_vote_ratio: float = 1.0,
                 radius_margin: int = 2, gradient_kernel: int = 5, batch_size: int = 4096,
                 max_accumulator_pixels: int = 40_000_000):
        """
        Initialize circle detector.

        Args:
            center_vote_ratio: Center vote threshold as a fraction of param1
            radius_vote_ratio: Radius vote threshold as a fraction of param2
            radius_margin: Pixels added to both ends of the radius range when voting for centers
            gradient_kernel: Sobel aperture used for gradient directions
            batch_size: Edge points voted per accumulation batch
            max_accumulator_pixels: Largest image (in pixels) the accumulator may cover
        """
        if radius_margin < 0:
            raise ValueError(f"radius_margin must be non-negative, got {radius_margin}")
        self.center_vote_ratio = center_vote_ratio
        self.radius_vote_ratio = radius_vote_ratio
        self.radius_margin = int(radius_margin)
        self.gradient_kernel = gradient_kernel
        self.batch_size = batch_size
        self.max_accumulator_pixels = max_accumulator_pixels

    @classmethod
    def from_config(cls, section: dict) -> 'CircleDetector':
        return cls(
            center_vote_ratio=section['center_vote_ratio'],
            radius_vote_ratio=section['radius_vote_ratio'],
            radius_margin=section['radius_margin'],
            gradient_kernel=section['gradient_kernel'],
            batch_size=section['batch_size'],
            max_accumulator_pixels=section['max_accumulator_pixels'],
        )

    def detect(self, binary: BinaryImage, params: DetectionParams) -> DetectionResult:
        """
        Detect circles in a binarized image.

        Args:
            binary: Foreground mask with its blurred intensity image
            params: Detection parameter snapshot

        Returns:
            Accepted circles ordered by descending votes
        """
        try:
            params.validate()
        except InvalidParams as exc:
            raise DetectionFailed(f"Invalid detection parameters: {exc}") from exc

        n_cells = binary.width * binary.height
        if n_cells > self.max_accumulator_pixels:
            raise DetectionFailed(
                f"Image of {binary.width}x{binary.height} exceeds the accumulator "
                f"limit of {self.max_accumulator_pixels} pixels"
            )

        try:
            edges = self.extract_edges(binary)
            if len(edges) == 0:
                logger.debug("No edge points, nothing to detect")
                return DetectionResult()

            accumulator = self.accumulate_centers(edges, binary.width, binary.height, params)
            candidates = self.find_candidates(accumulator, params)
            rim = edges.select(edges.rim)
            scored = self.estimate_radii(candidates, rim, params)
        except MemoryError as exc:
            raise DetectionFailed(
                f"Could not allocate accumulator for {binary.width}x{binary.height} image"
            ) from exc
        except cv2.error as exc:
            raise DetectionFailed(f"Gradient computation failed: {exc}") from exc

        circles = merge_circles(scored, params.min_dist)
        logger.debug("%d edge points (%d rim), %d candidates, %d scored, %d accepted",
                     len(edges), len(rim), len(candidates), len(scored), len(circles))
        return DetectionResult(tuple(circles))

    def extract_edges(self, binary: BinaryImage) -> EdgePoints:
        """Foreground pixels with a usable intensity gradient."""
        intensity = binary.intensity.pixels
        gx = cv2.Sobel(intensity, cv2.CV_32F, 1, 0, ksize=self.gradient_kernel)
        gy = cv2.Sobel(intensity, cv2.CV_32F, 0, 1, ksize=self.gradient_kernel)
        magnitude = np.hypot(gx, gy)
        foreground = binary.pixels > 0

        ys, xs = np.nonzero(foreground & (magnitude > 0))
        mag = magnitude[ys, xs]
        ux = gx[ys, xs] / mag
        uy = gy[ys, xs] / mag

        # neighbours one step along the gradient; background counts as zero
        band = np.pad(np.where(foreground, magnitude, 0), 1)
        step_x = np.rint(ux).astype(np.intp)
        step_y = np.rint(uy).astype(np.intp)
        ahead = band[ys + 1 + step_y, xs + 1 + step_x]
        behind = band[ys + 1 - step_y, xs + 1 - step_x]

        return EdgePoints(
            xs=xs.astype(np.float32),
            ys=ys.astype(np.float32),
            ux=ux,
            uy=uy,
            rim=(mag >= ahead) & (mag >= behind),
        )

    def accumulate_centers(self, edges: EdgePoints, width: int, height: int,
                           params: DetectionParams) -> np.ndarray:
        """
        Stage 1: vote along each gradient line over the radius range.

        The range is widened by `radius_margin` on both sides so a narrow
        range still gathers the band around a rim at its bound.

        Returns:
            (height, width) array of vote counts
        """
        low = max(int(params.min_radius) - self.radius_margin, 0)
        high = int(params.max_radius) + self.radius_margin
        radii = np.arange(low, high + 1, dtype=np.float32)
        # r = 0 lands on the edge point itself and is counted once
        offsets = np.concatenate([radii, -radii[radii > 0]])

        accumulator = np.zeros(width * height, dtype=np.int64)
        for start in range(0, len(edges), self.batch_size):
            stop = start + self.batch_size
            cx = np.rint(edges.xs[start:stop, None] + edges.ux[start:stop, None] * offsets)
            cy = np.rint(edges.ys[start:stop, None] + edges.uy[start:stop, None] * offsets)
            inside = (cx >= 0) & (cx < width) & (cy >= 0) & (cy < height)
            cells = cy[inside].astype(np.int64) * width + cx[inside].astype(np.int64)
            accumulator += np.bincount(cells, minlength=width * height)

        return accumulator.reshape(height, width)

    def find_candidates(self, accumulator: np.ndarray,
                        params: DetectionParams) -> List[Candidate]:
        """Local maxima above the center threshold, strongest first."""
        threshold = params.param1 * self.center_vote_ratio
        peaks = maximum_filter(accumulator, size=3, mode='constant', cval=0)
        mask = (accumulator > threshold) & (accumulator == peaks)

        ys, xs = np.nonzero(mask)
        votes = accumulator[ys, xs]
        # stable sort keeps row-major order among equal votes
        order = np.argsort(-votes, kind='stable')

        width = accumulator.shape[1]
        return [
            Candidate(int(ys[i]) * width + int(xs[i]), int(xs[i]), int(ys[i]), int(votes[i]))
            for i in order
        ]

    def estimate_radii(self, candidates: List[Candidate], edges: EdgePoints,
                       params: DetectionParams) -> List[Tuple[int, Circle]]:
        """
        Stage 2: pick each candidate's best-supported radius.

        Returns:
            (scan_index, circle) pairs that pass the radius vote threshold
        """
        min_r = int(params.min_radius)
        max_r = int(params.max_radius)
        n_bins = max_r - min_r + 1
        threshold = params.param2 * self.radius_vote_ratio

        scored = []
        for candidate in candidates:
            best = self._best_radius(candidate, edges, min_r, max_r, n_bins)
            if best is None:
                continue
            radius, votes = best
            if votes < threshold:
                continue
            scored.append((candidate.scan_index,
                           Circle(float(candidate.x), float(candidate.y), radius, votes)))
        return scored

    @staticmethod
    def _best_radius(candidate: Candidate, edges: EdgePoints, min_r: int, max_r: int,
                     n_bins: int) -> Optional[Tuple[float, int]]:
        # edge points are row-major, so ys is sorted
        reach = max_r + 0.5
        lo = np.searchsorted(edges.ys, candidate.y - reach, side='left')
        hi = np.searchsorted(edges.ys, candidate.y + reach, side='right')
        dx = edges.xs[lo:hi] - candidate.x
        dy = edges.ys[lo:hi] - candidate.y
        near = np.abs(dx) <= reach
        dist = np.hypot(dx[near], dy[near])

        bins = np.rint(dist).astype(np.int64)
        in_range = (bins >= min_r) & (bins <= max_r)
        dist = dist[in_range]
        bins = bins[in_range] - min_r
        if dist.size == 0:
            return None

        counts = np.bincount(bins, minlength=n_bins)
        best = int(np.argmax(counts))
        return float(dist[bins == best].mean()), int(counts[best])


def merge_circles(scored: List[Tuple[int, Circle]], min_dist: float) -> List[Circle]:
    """
    Greedy vote-ordered merge of duplicate detections.

    Args:
        scored: (scan_index, circle) pairs
        min_dist: Centers closer than or equal to this are duplicates

    Returns:
        Accepted circles, strongest first
    """
    ordered = sorted(scored, key=lambda item: (-item[1].votes, item[0]))
    accepted: List[Circle] = []
    for _, circle in ordered:
        if all(circle.distance_to(other) > min_dist for other in accepted):
            accepted.append(circle)
    return accepted


def detect_circles(binary: BinaryImage, params: Optional[DetectionParams] = None) -> DetectionResult:
    """Convenience function for circle detection with default settings."""
    return CircleDetector().detect(binary, params or DetectionParams())
