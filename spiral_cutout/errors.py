from __future__ import annotations


class InvalidImageError(ValueError):
    """Upload is not an image (media type) or could not be decoded."""


class ModelUnavailableError(RuntimeError):
    """The segmentation model could not be loaded."""


class NoForegroundError(RuntimeError):
    """Label map contains only background."""


class NoProcessedImageError(RuntimeError):
    """A spiral was requested before any image was processed."""
