"""Batch processing example for multiple images."""

from pathlib import Path

from spherecount import PipelineOrchestrator
from spherecount.config import load_config
from spherecount.exceptions import SphereCountError
from spherecount.utils.io_handler import JSONWriter, load_raster, save_raster
from spherecount.utils.logger import setup_from_config


def main():
    """Process every image in a directory with the same parameters."""
    config = load_config()
    logger = setup_from_config(config)

    images_dir = Path("test_data/images")
    output_dir = Path("output/batch")
    image_files = sorted(images_dir.glob("*.png")) + sorted(images_dir.glob("*.jpg"))

    logger.info(f"Processing {len(image_files)} images...")

    results = []
    with PipelineOrchestrator(config) as orchestrator:
        for i, image_path in enumerate(image_files):
            logger.info(f"Processing image {i+1}/{len(image_files)}: {image_path.name}")

            try:
                image = load_raster(image_path)
                publication = orchestrator.process(image)
            except SphereCountError as exc:
                logger.warning(f"Skipping {image_path.name}: {exc}")
                continue

            save_raster(publication.annotated_image, output_dir / f"{image_path.stem}_circles.png")
            result = publication.to_dict()
            result['image_name'] = image_path.name
            results.append(result)

    JSONWriter.save_results(results, str(output_dir / "batch_results.json"))
    logger.info("Batch processing complete!")


if __name__ == "__main__":
    main()
