"""GPS position provider."""

from .trak4_client import PositionProvider, Trak4Client, map_device_report

__all__ = ["PositionProvider", "Trak4Client", "map_device_report"]
