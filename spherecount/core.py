"""
SphereCount Core Processor
Re-runs the detection pipeline whenever the image or parameters change,
publishing only the result of the most recent change
"""

import logging
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from spherecount.config import DEFAULT_CONFIG, get_section
from spherecount.detection.circle_detector import CircleDetector
from spherecount.exceptions import DetectionFailed, SphereCountError
from spherecount.models import DetectionParams, DetectionResult, RasterBuffer
from spherecount.params import ParameterInput
from spherecount.preprocessing.preprocessor import Preprocessor
from spherecount.utils.metrics import PerformanceMetrics
from spherecount.utils.visualization import Renderer

logger = logging.getLogger('spherecount.core')


class PipelineStatus(Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    PUBLISHED = 'published'
    FAILED = 'failed'

    def __str__(self):
        return self.value


@dataclass(frozen=True)
class PipelineState:
    """Orchestrator state; `error` is set only for FAILED."""
    status: PipelineStatus = PipelineStatus.IDLE
    generation: int = 0
    error: Optional[SphereCountError] = None

    @property
    def message(self) -> Optional[str]:
        """User-visible error text."""
        return str(self.error) if self.error is not None else None


@dataclass(frozen=True)
class Publication:
    """Everything the UI shows for one successful run."""
    generation: int
    result: DetectionResult
    annotated_image: RasterBuffer
    original_image: RasterBuffer
    params: DetectionParams
    timings: Dict[str, float] = field(default_factory=dict, compare=False)

    @property
    def count(self) -> int:
        return self.result.count

    def to_dict(self) -> Dict[str, Any]:
        output = self.result.to_dict()
        output.update({
            'generation': self.generation,
            'params': self.params.to_dict(),
            'image_size': {
                'width': self.original_image.width,
                'height': self.original_image.height,
            },
            'timings_ms': {name: round(ms, 2) for name, ms in self.timings.items()},
        })
        return output


class PipelineRun:
    """One generation's unit of work; owns every buffer it derives."""

    def __init__(self, generation: int, image: RasterBuffer, params: DetectionParams):
        self.generation = generation
        self.image = image
        self.params = params
        self.finished = threading.Event()
        self._buffers: Dict[str, Any] = {}

    @property
    def buffers(self) -> Dict[str, Any]:
        return dict(self._buffers)

    def execute(self, preprocessor: Preprocessor, detector: CircleDetector,
                renderer: Renderer) -> Publication:
        """
        Run preprocessing, detection and rendering.

        Returns:
            Publication for this run's generation
        """
        metrics = PerformanceMetrics()

        metrics.start_timer('preprocess')
        binary = preprocessor.preprocess(self.image)
        self._buffers['binary'] = binary
        metrics.stop_timer('preprocess')

        metrics.start_timer('detect')
        result = detector.detect(binary, self.params)
        self._buffers['result'] = result
        metrics.stop_timer('detect')

        metrics.start_timer('render')
        annotated = renderer.render(self.image, result)
        self._buffers['annotated'] = annotated
        metrics.stop_timer('render')

        logger.debug("Generation %d timings: %s", self.generation, metrics.format_summary())
        return Publication(
            generation=self.generation,
            result=result,
            annotated_image=annotated,
            original_image=self.image,
            params=self.params,
            timings=metrics.get_summary(),
        )

    def release(self):
        """Drop all derived buffers at once."""
        self._buffers.clear()


Listener = Callable[[PipelineState, Optional[Publication]], None]


class PipelineOrchestrator:
    """Owns the recompute loop and the currently published result."""

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 preprocessor: Optional[Preprocessor] = None,
                 detector: Optional[CircleDetector] = None,
                 renderer: Optional[Renderer] = None,
                 executor: Optional[Executor] = None):
        """
        Initialize orchestrator.

        Args:
            config: Configuration dictionary (optional)
            preprocessor: Preprocessing stage (built from config when omitted)
            detector: Detection stage (built from config when omitted)
            renderer: Rendering stage (built from config when omitted)
            executor: Executor running pipeline runs (a private thread pool when omitted)
        """
        self.config = config or DEFAULT_CONFIG
        detection = get_section(self.config, 'detection')

        self.preprocessor = preprocessor or Preprocessor.from_config(
            get_section(self.config, 'preprocessing'))
        self.detector = detector or CircleDetector.from_config(detection)
        self.renderer = renderer or Renderer(self.config)

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=get_section(self.config, 'pipeline')['max_workers'],
            thread_name_prefix='spherecount'
        )

        self._lock = threading.Lock()
        self._generation = 0
        self._state = PipelineState()
        self._publication: Optional[Publication] = None
        self._image: Optional[RasterBuffer] = None
        self._parameters = ParameterInput(DetectionParams.from_dict(detection))
        self._pending: Dict[int, PipelineRun] = {}
        self._listeners: List[Listener] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()

    @property
    def state(self) -> PipelineState:
        with self._lock:
            return self._state

    @property
    def publication(self) -> Optional[Publication]:
        with self._lock:
            return self._publication

    @property
    def params(self) -> DetectionParams:
        with self._lock:
            return self._parameters.current

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def snapshot(self) -> Tuple[PipelineState, Optional[Publication]]:
        """State and publication read together."""
        with self._lock:
            return self._state, self._publication

    def add_listener(self, listener: Listener):
        """Call `listener(state, publication)` after every publish or failure."""
        self._listeners.append(listener)

    def set_image(self, image: RasterBuffer) -> Optional[int]:
        """
        Replace the source image and start a new run.

        Returns:
            Generation of the dispatched run
        """
        with self._lock:
            self._image = image
            run = self._new_run_locked()
        return self._submit(run)

    def set_params(self, params: DetectionParams) -> Optional[int]:
        """
        Replace the detection parameters.

        Invalid fields fall back to their last valid value. A run starts only
        if the effective parameters changed and an image is present.

        Returns:
            Generation of the dispatched run, or None
        """
        with self._lock:
            before = self._parameters.current
            after = self._parameters.replace(params)
            run = self._new_run_locked() if after != before else None
        return self._submit(run)

    def update_param(self, name: str, raw: Any) -> Optional[int]:
        """Apply one raw UI field edit; see `set_params`."""
        with self._lock:
            before = self._parameters.current
            after = self._parameters.update(name, raw)
            run = self._new_run_locked() if after != before else None
        return self._submit(run)

    def wait(self, timeout: Optional[float] = None) -> PipelineState:
        """
        Block until every dispatched run has finished.

        Raises:
            TimeoutError: if runs are still outstanding after `timeout` seconds
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                pending = list(self._pending.values())
                if not pending:
                    return self._state
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if not pending[0].finished.wait(remaining):
                raise TimeoutError(f"Pipeline still running after {timeout}s")

    def process(self, image: RasterBuffer,
                params: Optional[DetectionParams] = None) -> Publication:
        """Run the pipeline synchronously, outside the recompute loop."""
        run = PipelineRun(0, image, (params or self.params).validate())
        try:
            return run.execute(self.preprocessor, self.detector, self.renderer)
        finally:
            run.release()

    def shutdown(self, wait: bool = True):
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def _new_run_locked(self) -> Optional[PipelineRun]:
        if self._image is None:
            return None
        self._generation += 1
        run = PipelineRun(self._generation, self._image, self._parameters.current)
        self._state = PipelineState(PipelineStatus.RUNNING, run.generation)
        self._pending[run.generation] = run
        return run

    def _submit(self, run: Optional[PipelineRun]) -> Optional[int]:
        if run is None:
            return None
        logger.debug("Dispatching generation %d", run.generation)
        try:
            self._executor.submit(self._execute, run)
        except RuntimeError:
            with self._lock:
                self._pending.pop(run.generation, None)
            run.finished.set()
            raise
        return run.generation

    def _execute(self, run: PipelineRun):
        try:
            publication = run.execute(self.preprocessor, self.detector, self.renderer)
        except SphereCountError as exc:
            self._fail(run, exc)
        except Exception as exc:
            logger.exception("Unexpected error in generation %d", run.generation)
            self._fail(run, DetectionFailed(f"Unexpected error: {exc}"))
        else:
            self._publish(run, publication)
        finally:
            run.release()
            with self._lock:
                self._pending.pop(run.generation, None)
            run.finished.set()

    def _publish(self, run: PipelineRun, publication: Publication):
        with self._lock:
            if run.generation != self._generation:
                logger.debug("Discarding generation %d, superseded by %d",
                             run.generation, self._generation)
                return
            self._publication = publication
            self._state = PipelineState(PipelineStatus.PUBLISHED, run.generation)
            state = self._state

        logger.info("Generation %d: %d circles", run.generation, publication.count)
        self._notify(state, publication)

    def _fail(self, run: PipelineRun, error: SphereCountError):
        with self._lock:
            if run.generation != self._generation:
                logger.debug("Discarding failure of superseded generation %d", run.generation)
                return
            self._state = PipelineState(PipelineStatus.FAILED, run.generation, error)
            state, publication = self._state, self._publication

        logger.warning("Generation %d failed: %s", run.generation, error)
        self._notify(state, publication)

    def _notify(self, state: PipelineState, publication: Optional[Publication]):
        for listener in list(self._listeners):
            try:
                listener(state, publication)
            except Exception:
                logger.exception("Pipeline listener %r raised", listener)
