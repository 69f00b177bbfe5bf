"""Find unused IPv4 addresses with an external probe and cache the results."""

__version__ = "1.0.0"
