"""pyplanet: staged multi-physics planet simulation (atmosphere, hydrology, life)."""

__version__ = "0.1.0"
