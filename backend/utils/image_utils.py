import io
from pathlib import Path
from PIL import Image
from typing import Tuple, Union

import config


def load_image(source: Union[str, bytes, Path]) -> Image.Image:
    try:
        if isinstance(source, (str, Path)):
            path = Path(source)
            if not path.exists():
                raise ValueError(f"Image file not found: {source}")
            with open(path, 'rb') as f:
                image_bytes = f.read()
        else:
            image_bytes = source

        image = Image.open(io.BytesIO(image_bytes))
        image.load()

        if image.format not in config.SUPPORTED_IMAGE_FORMATS:
            raise ValueError(f"Unsupported image format: {image.format}")

        return image

    except Exception as e:
        raise ValueError(f"Failed to load image: {str(e)}")


def _to_rgb(image: Image.Image) -> Image.Image:
    if image.mode == 'RGBA':
        rgb_image = Image.new('RGB', image.size, (255, 255, 255))
        rgb_image.paste(image, mask=image.split()[3])
        return rgb_image
    elif image.mode != 'RGB':
        return image.convert('RGB')
    return image


def save_thumbnail(
    image: Image.Image,
    dest: Union[str, Path],
    width: int = config.THUMBNAIL_WIDTH,
    quality: int = config.THUMBNAIL_QUALITY,
) -> Tuple[int, int]:
    """
    Write a JPEG preview no wider than ``width``; never enlarges.

    Returns the thumbnail size.
    """
    thumb = _to_rgb(image)
    if thumb.width > width:
        height = max(1, round(thumb.height * width / thumb.width))
        thumb = thumb.resize((width, height), Image.LANCZOS)
    thumb.save(dest, format='JPEG', quality=quality)
    return thumb.size


def thumbnail_name(filename: str) -> str:
    """``image.png`` -> ``image_thumb.jpg``"""
    return f"{Path(filename).stem}_thumb.jpg"
