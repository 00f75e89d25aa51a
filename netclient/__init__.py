"""Host configuration, server registry, local DNS and resolver file editing for WireGuard mesh hosts."""

__version__ = "0.1.0"