"""Exceptions raised along the fetch -> transform pipeline."""


class ImageTransformError(Exception):
    """Base class for image transform service errors."""


class OriginFetchError(ImageTransformError):
    """The source image could not be fetched (status, transport, timeout, size)."""


class TransformError(ImageTransformError):
    """The fetched bytes could not be decoded, resized or encoded."""
