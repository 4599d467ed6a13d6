"""
Template Registration Utility
=============================
Seed enrolled fingerprints from a directory of images.
Each image should be named as: person_id_name.png
Example: emp001_John_Doe.png
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

from . import config
from .database import DatabaseManager
from .errors import InvalidImage, StorageUnavailable

logger = logging.getLogger(__name__)

IMAGE_PATTERNS = ("*.png", "*.bmp", "*.jpg", "*.jpeg")


def parse_filename(path: Path) -> Optional[Tuple[str, str]]:
    """
    Split ``emp001_john_doe.png`` into ("emp001", "John Doe").

    Returns None when the name has no person part.
    """
    parts = path.stem.split("_")
    if len(parts) < 2 or not parts[0]:
        return None
    return parts[0], " ".join(parts[1:]).title()


def register_from_directory(images_dir: Path, db_manager: DatabaseManager) -> Tuple[int, int]:
    """
    Register every image in a directory.

    Returns:
        (registered, failed) counts
    """
    image_files = sorted(path for pattern in IMAGE_PATTERNS for path in images_dir.glob(pattern))
    logger.info(f"Found {len(image_files)} images in {images_dir}")

    success_count = 0
    fail_count = 0

    for img_path in image_files:
        parsed = parse_filename(img_path)
        if parsed is None:
            logger.warning(f"Skipping {img_path.name} - invalid filename format")
            continue

        person_id, person_name = parsed
        try:
            db_manager.add_template(person_id, img_path.read_bytes(), person_name=person_name)
            logger.info(f"Registered: {person_name} ({person_id}) ✓")
            success_count += 1
        except (InvalidImage, StorageUnavailable, OSError) as e:
            logger.error(f"Registering {img_path.name} failed ✗ {e}")
            fail_count += 1

    logger.info(f"Registration complete: {success_count} registered, {fail_count} failed")
    return success_count, fail_count


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Fingerprint Template Registration Utility")
    parser.add_argument("--dir", type=Path, required=True, help="Directory containing fingerprint images")
    parser.add_argument("--db", type=Path, default=config.DATABASE_PATH, help="SQLite database file")

    args = parser.parse_args(argv)
    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)

    if not args.dir.is_dir():
        logger.error(f"Directory not found: {args.dir}")
        return 1

    db_manager = DatabaseManager(args.db)
    if not db_manager.initialize():
        return 1

    try:
        _, failed = register_from_directory(args.dir, db_manager)
    finally:
        db_manager.close()
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
