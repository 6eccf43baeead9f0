"""Geofence transition → guardian push-notification pipeline."""

__version__ = "0.1.0"
