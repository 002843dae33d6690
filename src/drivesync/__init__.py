"""DriveSync - Reliable cloud mirror synchronization."""

__version__ = "0.1.0"
