"""Two-way polling mirror for a pair of directory trees."""

__version__ = "1.0.0"
