"""packdraft - pack-based prediction market fantasy game engine."""

__version__ = "0.1.0"
