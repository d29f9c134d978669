"""mpv-music: a crash-tolerant local music index with forgiving filter resolution."""

__version__ = "0.4.0"
