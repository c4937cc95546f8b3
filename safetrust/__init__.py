"""Safety Management trust and sync core: MFA verification and the offline action queue."""

__version__ = "1.0.0"
