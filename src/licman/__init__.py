"""licman: in-memory license key server."""

__version__ = '0.1.0'
