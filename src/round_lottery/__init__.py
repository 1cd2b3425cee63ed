"""Round-based lottery with multi-winner settlement and refund fallback."""

__version__ = "1.0.0"
