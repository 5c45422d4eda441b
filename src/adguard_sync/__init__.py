"""Origin-to-replica configuration sync for AdGuard Home instances."""

__version__ = "0.1.0"
