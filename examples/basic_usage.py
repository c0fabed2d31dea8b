"""Basic usage example for SphereCount."""

from spherecount import PipelineOrchestrator, PipelineStatus
from spherecount.exceptions import InvalidImage
from spherecount.utils.io_handler import load_raster, save_raster


def main():
    """Count circles in one image and save the annotated copy."""
    image_path = "test_data/images/sample.png"
    try:
        image = load_raster(image_path)
    except InvalidImage as exc:
        print(f"Error: {exc}")
        return

    with PipelineOrchestrator() as orchestrator:
        orchestrator.add_listener(
            lambda state, publication: print(f"Generation {state.generation}: {state.status}"))

        print("Detecting circles...")
        orchestrator.set_image(image)
        state = orchestrator.wait(timeout=60)
        if state.status == PipelineStatus.FAILED:
            print(f"Detection failed: {state.message}")
            return
        print(f"Detected {orchestrator.publication.count} circles")

        # Tighten the radius range the way a user would in the form
        orchestrator.update_param('min_radius', '10')
        orchestrator.update_param('max_radius', '30')
        orchestrator.wait(timeout=60)
        publication = orchestrator.publication

    print(f"With radius 10-30: {publication.count} circles")
    for circle in publication.result.circles:
        print(f"  ({circle.center_x:.1f}, {circle.center_y:.1f}) r={circle.radius:.1f}")

    output_path = "output/basic_detection.png"
    save_raster(publication.annotated_image, output_path)
    print(f"Results saved to {output_path}")


if __name__ == "__main__":
    main()
