"""Audio output control."""

from .volume import VolumeService

__all__ = ["VolumeService"]
