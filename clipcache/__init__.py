"""clipcache - media classification, conversion and frame caching pipeline."""

__version__ = "1.0.0"
