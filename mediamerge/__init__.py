"""HTTP service that merges, mixes and trims uploaded media with ffmpeg."""

__version__ = "0.1.0"
