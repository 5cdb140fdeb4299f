"""Remote system monitoring and chunked file transfer over line-delimited JSON."""

__version__ = "0.1.0"
__all__ = ["__version__"]