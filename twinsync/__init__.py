"""twinsync - openHAB item discovery, sensor mapping and live sync service."""

__version__ = "0.1.0"
