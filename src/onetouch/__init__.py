"""onetouch - pair two devices with a short-lived code."""

__version__ = "0.1.0"
