"""
media/images.py -- Validate, crop, and re-encode uploaded images with Pillow.

Uploads are read fully into memory (they are capped by MAX_UPLOAD_BYTES),
decoded, center-cropped to a fixed size, and written as JPEG quality 90:

  user photos   500 x 500    users/user-<id>-<ms>.jpeg
  tour cover   2000 x 1333   tours/tour-<id>-<ms>-cover.jpeg
  tour images  2000 x 1333   tours/tour-<id>-<ms>-<n>.jpeg

Re-encoding strips metadata and guarantees the stored file is a real JPEG
whatever the client claimed.
"""

from __future__ import annotations

import io
import logging
import time
from pathlib import Path

from PIL import Image, ImageOps, UnidentifiedImageError

from core.errors import ValidationFailure

logger = logging.getLogger("wayfarer.media")

MAX_UPLOAD_BYTES = 5 * 1024 * 1024
MAX_TOUR_IMAGES = 3
JPEG_QUALITY = 90
USER_PHOTO_SIZE = (500, 500)
TOUR_IMAGE_SIZE = (2000, 1333)

_NOT_AN_IMAGE = "Not an image! Please upload only images."


def load_image(data: bytes, content_type: str | None) -> Image.Image:
    """Decode upload bytes. Raises ValidationFailure for anything but an image."""
    if not content_type or not content_type.startswith("image/"):
        raise ValidationFailure(_NOT_AN_IMAGE)
    if len(data) > MAX_UPLOAD_BYTES:
        raise ValidationFailure(f"Image too large. Maximum size is {MAX_UPLOAD_BYTES // (1024 * 1024)} MB.")
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError):
        raise ValidationFailure(_NOT_AN_IMAGE) from None
    return image


def resize_to_jpeg(image: Image.Image, size: tuple[int, int]) -> bytes:
    """Center-crop to exactly size and encode as JPEG."""
    fitted = ImageOps.fit(image.convert("RGB"), size, method=Image.Resampling.LANCZOS)
    buffer = io.BytesIO()
    fitted.save(buffer, format="JPEG", quality=JPEG_QUALITY)
    return buffer.getvalue()


def _stamp() -> int:
    return int(time.time() * 1000)


class ImageStore:
    """Writes processed images under media_root/users and media_root/tours."""

    def __init__(self, media_root: str | Path) -> None:
        self.root = Path(media_root)
        self.users_dir = self.root / "users"
        self.tours_dir = self.root / "tours"
        self.users_dir.mkdir(parents=True, exist_ok=True)
        self.tours_dir.mkdir(parents=True, exist_ok=True)

    def save_user_photo(self, user_id: int, data: bytes, content_type: str | None) -> str:
        """Process and store a profile photo. Returns the new file name."""
        image = load_image(data, content_type)
        filename = f"user-{user_id}-{_stamp()}.jpeg"
        (self.users_dir / filename).write_bytes(resize_to_jpeg(image, USER_PHOTO_SIZE))
        logger.info("Stored user photo %s", filename)
        return filename

    def save_tour_images(
        self,
        tour_id: int,
        cover: tuple[bytes, str | None] | None,
        images: list[tuple[bytes, str | None]],
    ) -> tuple[str | None, list[str]]:
        """Process a cover and up to MAX_TOUR_IMAGES gallery images.

        Every upload is decoded before anything is written, so one bad file
        leaves the directory untouched. Returns (cover name or None, names).
        """
        if len(images) > MAX_TOUR_IMAGES:
            raise ValidationFailure(f"A tour can have at most {MAX_TOUR_IMAGES} images.")
        decoded_cover = load_image(*cover) if cover is not None else None
        decoded = [load_image(data, content_type) for data, content_type in images]

        stamp = _stamp()
        cover_name = None
        if decoded_cover is not None:
            cover_name = f"tour-{tour_id}-{stamp}-cover.jpeg"
            (self.tours_dir / cover_name).write_bytes(resize_to_jpeg(decoded_cover, TOUR_IMAGE_SIZE))
        names = []
        for index, image in enumerate(decoded, start=1):
            name = f"tour-{tour_id}-{stamp}-{index}.jpeg"
            (self.tours_dir / name).write_bytes(resize_to_jpeg(image, TOUR_IMAGE_SIZE))
            names.append(name)
        return cover_name, names
