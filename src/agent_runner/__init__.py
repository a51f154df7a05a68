"""Container-side agent runner bridging a host to an agent backend."""

__version__ = "0.1.0"
