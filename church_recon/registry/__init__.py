"""Session-owned store of trained file models."""

from .file_models import FileModelRegistry

__all__ = ["FileModelRegistry"]
