"""LeakFairy - navigation memory leak detection over the Chrome DevTools Protocol."""

__version__ = "0.1.0"
