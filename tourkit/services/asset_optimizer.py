"""
Tourkit — Asset Optimizer
===========================

What:  Shrinks oversized photos before they are uploaded.
Why:   Phone photos are routinely 8-15 MB. On a weak connection every MB
       is another chance for the transfer to stall, so anything over the
       threshold is downscaled and re-encoded first.
How:   Pillow decodes the image, applies EXIF orientation, scales it so the
       longest side is at most `max_dimension`, and writes a JPEG at the
       configured quality.

Rules:
    - Non-images and images <= max_bytes are returned unchanged.
    - The output keeps the original name; its type becomes image/jpeg.
    - The input descriptor is never modified.
    - Decode/encode failure raises OptimizationFailed; the upload path uses
      optimize_or_original(), which logs it and sends the original instead.
"""

import io
import logging
from typing import Optional, Tuple

from PIL import Image, ImageOps

from tourkit.config import OptimizerConfig
from tourkit.exceptions import OptimizationFailed
from tourkit.schemas.assets import AssetDescriptor

logger = logging.getLogger(__name__)

OUTPUT_MIME_TYPE = "image/jpeg"

_KB = 1024
_MB = 1024 * 1024


def scaled_dimensions(width: int, height: int, max_dimension: int) -> Tuple[int, int]:
    """
    Fit (width, height) inside a max_dimension square, keeping aspect ratio.

    The longer side becomes exactly max_dimension; dimensions already within
    bound are returned as they are.
    """
    if width <= max_dimension and height <= max_dimension:
        return width, height
    if width >= height:
        return max_dimension, max(1, round(height * max_dimension / width))
    return max(1, round(width * max_dimension / height)), max_dimension


def optimal_chunk_size(size: int) -> int:
    """
    Chunk size used when streaming a body of `size` bytes.

        < 1 MB   → one chunk
        1-10 MB  → 512 KB
        > 10 MB  → 1 MB
    """
    if size < _MB:
        return max(size, 1)
    if size < 10 * _MB:
        return 512 * _KB
    return _MB


class AssetOptimizer:
    """
    Pre-transfer image shrinker. Stateless apart from its config, so one
    instance can serve any number of concurrent uploads.
    """

    def __init__(self, config: Optional[OptimizerConfig] = None):
        self.config = config or OptimizerConfig()

    def needs_optimization(self, asset: AssetDescriptor) -> bool:
        return asset.is_image and asset.size > self.config.max_bytes

    def optimize(self, asset: AssetDescriptor) -> AssetDescriptor:
        """
        Return a smaller JPEG copy of an oversized image, or `asset` itself.

        Raises:
            OptimizationFailed: the payload could not be decoded or encoded.
        """
        if not self.needs_optimization(asset):
            return asset

        try:
            with Image.open(io.BytesIO(asset.data)) as source:
                source.load()
                image = ImageOps.exif_transpose(source)
                if image.mode not in ("RGB", "L"):
                    image = image.convert("RGB")

                target = scaled_dimensions(image.width, image.height, self.config.max_dimension)
                if target != image.size:
                    image = image.resize(target, Image.Resampling.LANCZOS)

                out = io.BytesIO()
                image.save(
                    out,
                    format="JPEG",
                    quality=round(self.config.quality * 100),
                    optimize=True,
                )
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            raise OptimizationFailed(
                message=f"Could not optimize image '{asset.name}': {e}",
                context={"name": asset.name, "mime_type": asset.mime_type, "size": asset.size},
            ) from e

        optimized = AssetDescriptor(
            name=asset.name,
            mime_type=OUTPUT_MIME_TYPE,
            data=out.getvalue(),
        )
        logger.info(
            "Optimized %s: %d → %d bytes (%dx%d)",
            asset.name,
            asset.size,
            optimized.size,
            target[0],
            target[1],
        )
        return optimized

    def optimize_or_original(self, asset: AssetDescriptor) -> AssetDescriptor:
        """optimize(), falling back to the untouched asset on OptimizationFailed."""
        try:
            return self.optimize(asset)
        except OptimizationFailed as e:
            logger.warning("%s; uploading original", e.message)
            return asset
