"""genflow - provider routing and human-in-the-loop generation workflows."""

__version__ = "0.1.0"
