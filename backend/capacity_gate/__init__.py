"""Cost-aware capacity control and tiered request admission."""

__version__ = "1.0.0"
