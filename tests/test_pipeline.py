"""Tests for the generation-tagged pipeline orchestrator."""

import threading

import pytest

from spherecount.core import (PipelineOrchestrator, PipelineRun, PipelineState,
                              PipelineStatus)
from spherecount.exceptions import DetectionFailed, InvalidImage
from spherecount.models import Circle, DetectionParams, DetectionResult
from spherecount.preprocessing.preprocessor import Preprocessor
from spherecount.utils.visualization import Renderer

TIMEOUT = 10


class StubDetector:
    """Returns one circle whose radius echoes min_dist; can block or fail per min_dist."""

    def __init__(self):
        self.gates = {}
        self.failures = {}
        self.started = {}

    def gate(self, min_dist):
        self.gates[min_dist] = threading.Event()
        self.started[min_dist] = threading.Event()
        return self.gates[min_dist]

    def detect(self, binary, params):
        if params.min_dist in self.started:
            self.started[params.min_dist].set()
        if params.min_dist in self.gates:
            assert self.gates[params.min_dist].wait(TIMEOUT)
        if params.min_dist in self.failures:
            raise self.failures[params.min_dist]
        return DetectionResult((Circle(1.0, 1.0, float(params.min_dist), 1),))


class RecordingRenderer(Renderer):
    """Keeps every label it draws."""

    def __init__(self):
        super().__init__()
        self.labels = []

    def render(self, original, result):
        self.labels.append(self.label_for(result))
        return super().render(original, result)


@pytest.fixture
def detector():
    return StubDetector()


@pytest.fixture
def orchestrator(detector):
    with PipelineOrchestrator(detector=detector) as orch:
        yield orch
        for gate in detector.gates.values():
            gate.set()


class TestStateMachine:
    """Test state transitions."""

    def test_initially_idle(self, orchestrator):
        assert orchestrator.state == PipelineState()
        assert orchestrator.state.status == PipelineStatus.IDLE
        assert orchestrator.publication is None
        assert orchestrator.generation == 0

    def test_params_without_image_stay_idle(self, orchestrator):
        """Parameter edits before an image only update the stored values."""
        assert orchestrator.set_params(DetectionParams(min_dist=30)) is None
        assert orchestrator.update_param('param2', '40') is None
        assert orchestrator.state.status == PipelineStatus.IDLE
        assert orchestrator.params == DetectionParams(min_dist=30, param2=40)

    def test_image_publishes(self, orchestrator, two_disk_image):
        generation = orchestrator.set_image(two_disk_image)
        state = orchestrator.wait(TIMEOUT)
        assert generation == 1
        assert state == PipelineState(PipelineStatus.PUBLISHED, 1)
        publication = orchestrator.publication
        assert publication.generation == 1
        assert publication.count == 1
        assert publication.original_image is two_disk_image
        assert publication.annotated_image is not two_disk_image
        assert set(publication.timings) == {'preprocess', 'detect', 'render'}

    def test_param_change_reruns(self, orchestrator, two_disk_image):
        orchestrator.set_image(two_disk_image)
        orchestrator.wait(TIMEOUT)
        assert orchestrator.set_params(DetectionParams(min_dist=15)) == 2
        orchestrator.wait(TIMEOUT)
        assert orchestrator.publication.generation == 2
        assert orchestrator.publication.params.min_dist == 15
        assert orchestrator.publication.result.circles[0].radius == 15.0

    def test_unchanged_params_do_not_rerun(self, orchestrator, two_disk_image):
        orchestrator.set_image(two_disk_image)
        orchestrator.wait(TIMEOUT)
        assert orchestrator.set_params(orchestrator.params) is None
        assert orchestrator.update_param('min_dist', '') is None
        assert orchestrator.generation == 1

    def test_invalid_param_never_dispatches(self, orchestrator, two_disk_image):
        """Invalid entries fall back at the input boundary."""
        orchestrator.set_image(two_disk_image)
        orchestrator.wait(TIMEOUT)
        assert orchestrator.update_param('min_radius', '500') is None
        assert orchestrator.set_params(DetectionParams(min_dist=0)) is None
        assert orchestrator.generation == 1
        assert orchestrator.params == DetectionParams()

    def test_dispatch_does_not_block(self, orchestrator, detector, two_disk_image):
        """A new change is accepted while a run is still in flight."""
        gate = detector.gate(10)
        orchestrator.set_image(two_disk_image)
        assert detector.started[10].wait(TIMEOUT)
        assert orchestrator.state == PipelineState(PipelineStatus.RUNNING, 1)

        assert orchestrator.set_params(DetectionParams(min_dist=20)) == 2
        assert orchestrator.state.generation == 2
        gate.set()
        orchestrator.wait(TIMEOUT)


class TestStaleResults:
    """Test that superseded runs never publish."""

    def test_late_old_result_dropped(self, orchestrator, detector, two_disk_image):
        """g1 finishing after g2 does not overwrite g2's publication."""
        gate = detector.gate(10)
        published = threading.Event()
        orchestrator.add_listener(
            lambda state, pub: published.set() if state.generation == 2 else None)

        orchestrator.set_image(two_disk_image)
        assert detector.started[10].wait(TIMEOUT)
        orchestrator.set_params(DetectionParams(min_dist=20))
        assert published.wait(TIMEOUT)
        assert orchestrator.publication.generation == 2

        gate.set()
        state = orchestrator.wait(TIMEOUT)
        assert state == PipelineState(PipelineStatus.PUBLISHED, 2)
        assert orchestrator.publication.params.min_dist == 20
        assert orchestrator.publication.result.circles[0].radius == 20.0

    def test_late_old_failure_dropped(self, orchestrator, detector, two_disk_image):
        gate = detector.gate(10)
        detector.failures[10] = DetectionFailed("boom")

        orchestrator.set_image(two_disk_image)
        assert detector.started[10].wait(TIMEOUT)
        orchestrator.set_params(DetectionParams(min_dist=20))
        gate.set()
        state = orchestrator.wait(TIMEOUT)
        assert state == PipelineState(PipelineStatus.PUBLISHED, 2)

    def test_listener_sees_only_latest(self, orchestrator, detector, two_disk_image):
        seen = []
        orchestrator.add_listener(lambda state, pub: seen.append(pub.generation))
        gate = detector.gate(10)

        orchestrator.set_image(two_disk_image)
        assert detector.started[10].wait(TIMEOUT)
        orchestrator.set_params(DetectionParams(min_dist=20))
        gate.set()
        orchestrator.wait(TIMEOUT)
        assert seen == [2]


class TestFailures:
    """Test failed runs."""

    def test_failure_keeps_previous_publication(self, orchestrator, detector, two_disk_image):
        orchestrator.set_image(two_disk_image)
        orchestrator.wait(TIMEOUT)
        first = orchestrator.publication

        detector.failures[99] = DetectionFailed("accumulator too large")
        orchestrator.set_params(DetectionParams(min_dist=99))
        state = orchestrator.wait(TIMEOUT)

        assert state.status == PipelineStatus.FAILED
        assert state.generation == 2
        assert isinstance(state.error, DetectionFailed)
        assert state.message == "accumulator too large"
        assert orchestrator.publication is first

    def test_unexpected_error_wrapped(self, orchestrator, detector, two_disk_image):
        detector.failures[10] = ZeroDivisionError("division by zero")
        orchestrator.set_image(two_disk_image)
        state = orchestrator.wait(TIMEOUT)
        assert state.status == PipelineStatus.FAILED
        assert isinstance(state.error, DetectionFailed)
        assert orchestrator.publication is None

    def test_recovers_after_failure(self, orchestrator, detector, two_disk_image):
        detector.failures[10] = DetectionFailed("boom")
        orchestrator.set_image(two_disk_image)
        assert orchestrator.wait(TIMEOUT).status == PipelineStatus.FAILED

        orchestrator.set_params(DetectionParams(min_dist=12))
        assert orchestrator.wait(TIMEOUT) == PipelineState(PipelineStatus.PUBLISHED, 2)

    def test_preprocess_failure(self, detector, two_disk_image):
        class BrokenPreprocessor(Preprocessor):
            def preprocess(self, image):
                raise InvalidImage("undecodable")

        with PipelineOrchestrator(preprocessor=BrokenPreprocessor(), detector=detector) as orch:
            orch.set_image(two_disk_image)
            state = orch.wait(TIMEOUT)
        assert state.status == PipelineStatus.FAILED
        assert isinstance(state.error, InvalidImage)

    def test_failing_listener_does_not_break_publish(self, orchestrator, two_disk_image):
        def broken(state, publication):
            raise RuntimeError("listener bug")

        orchestrator.add_listener(broken)
        orchestrator.set_image(two_disk_image)
        assert orchestrator.wait(TIMEOUT).status == PipelineStatus.PUBLISHED


class TestRenderConsistency:
    """Label drawn for each publish matches the published count."""

    def test_label_matches_publication(self, detector, two_disk_image):
        renderer = RecordingRenderer()
        with PipelineOrchestrator(detector=detector, renderer=renderer) as orch:
            orch.set_image(two_disk_image)
            orch.wait(TIMEOUT)
            assert renderer.labels[-1] == f"Circles: {orch.publication.count}"


class TestPipelineRun:
    """Test per-run buffer ownership."""

    def test_release_drops_buffers(self, detector, two_disk_image):
        run = PipelineRun(1, two_disk_image, DetectionParams())
        publication = run.execute(Preprocessor(), detector, Renderer())
        assert set(run.buffers) == {'binary', 'result', 'annotated'}
        run.release()
        assert run.buffers == {}
        assert publication.count == 1

    def test_process_is_synchronous(self, orchestrator, two_disk_image):
        publication = orchestrator.process(two_disk_image, DetectionParams(min_dist=33))
        assert publication.result.circles[0].radius == 33.0
        assert orchestrator.state.status == PipelineStatus.IDLE
        assert orchestrator.publication is None

    def test_wait_timeout(self, orchestrator, detector, two_disk_image):
        gate = detector.gate(10)
        orchestrator.set_image(two_disk_image)
        with pytest.raises(TimeoutError):
            orchestrator.wait(0.05)
        gate.set()
        orchestrator.wait(TIMEOUT)
