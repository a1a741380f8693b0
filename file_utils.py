import os
import uuid
import shutil
import logging
from pathlib import Path
from typing import Optional
from PIL import Image, UnidentifiedImageError
import aiofiles

from config import UPLOAD_DIR, PUBLIC_BASE_URL, MAX_UPLOAD_SIZE
from errors import PayloadTooLarge, ValidationFailed

logger = logging.getLogger(__name__)

# Allowed file types
ALLOWED_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.webp'}
ALLOWED_MIME_TYPES = {'image/jpeg', 'image/jpg', 'image/png', 'image/webp'}
ALLOWED_FORMATS = {'JPEG', 'PNG', 'WEBP'}
FORMAT_EXTENSIONS = {'JPEG': '.jpg', 'PNG': '.png', 'WEBP': '.webp'}

# Upload directories
CAMPAIGN_UPLOAD_DIR = UPLOAD_DIR / "campaigns"
TEMP_DIR = UPLOAD_DIR / "tmp"


def ensure_directories():
    """Ensure all necessary directories exist."""
    for directory in [UPLOAD_DIR, CAMPAIGN_UPLOAD_DIR, TEMP_DIR]:
        directory.mkdir(parents=True, exist_ok=True)


def check_upload_constraints(content_type: Optional[str], size: int):
    """Reject non-image MIME types and oversized files before touching the disk."""
    if not content_type or not content_type.startswith('image/'):
        raise ValidationFailed("Please select a valid image file")
    if content_type not in ALLOWED_MIME_TYPES:
        raise ValidationFailed("Only JPG, PNG and WEBP images are allowed")
    if size > MAX_UPLOAD_SIZE:
        raise PayloadTooLarge(
            f"Image size should be less than {MAX_UPLOAD_SIZE / (1024 * 1024):g}MB"
        )


def generate_secure_filename(original_filename: str) -> str:
    """Generate a secure, randomized filename."""
    _, ext = os.path.splitext((original_filename or '').lower())
    if ext not in ALLOWED_EXTENSIONS:
        ext = '.jpg'
    return f"{uuid.uuid4()}{ext}"


def detect_image_format(file_path: Path) -> Optional[str]:
    """Return the Pillow format name if the file is a sane image we accept."""
    try:
        with Image.open(file_path) as img:
            if img.format not in ALLOWED_FORMATS:
                return None
            if img.width > 10000 or img.height > 10000:
                return None
            img.verify()
            return img.format
    except (UnidentifiedImageError, OSError, SyntaxError):
        return None


async def save_upload_file_securely(file) -> str:
    """
    Store an uploaded campaign image and return its path relative to UPLOAD_DIR.

    The bytes are written to a temp file first and only moved into place once
    Pillow confirms they really are an image of an allowed format.
    """
    content = await file.read()
    check_upload_constraints(file.content_type, len(content))

    secure_filename = generate_secure_filename(file.filename)
    temp_path = TEMP_DIR / secure_filename
    try:
        async with aiofiles.open(temp_path, 'wb') as buffer:
            await buffer.write(content)

        image_format = detect_image_format(temp_path)
        if image_format is None:
            raise ValidationFailed("Invalid image file")

        # Extension follows the real format, not the client's filename
        final_name = Path(secure_filename).stem + FORMAT_EXTENSIONS[image_format]
        final_path = CAMPAIGN_UPLOAD_DIR / final_name
        shutil.move(str(temp_path), str(final_path))
    finally:
        if temp_path.exists():
            temp_path.unlink()

    logger.info(f"Stored upload campaigns/{final_name} ({len(content)} bytes)")
    return f"campaigns/{final_name}"


def public_url(relative_path: str) -> str:
    return f"{PUBLIC_BASE_URL}/uploads/{relative_path}"


def cleanup_temp_files():
    """Clean up temporary files left behind by interrupted uploads."""
    if TEMP_DIR.exists():
        for file_path in TEMP_DIR.glob("*"):
            try:
                if file_path.is_file():
                    file_path.unlink()
            except OSError as e:
                logger.warning(f"Could not remove temp file {file_path}: {e}")
