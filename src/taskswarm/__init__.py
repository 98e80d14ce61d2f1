"""taskswarm: multi-agent task dispatch."""

__version__ = "0.1.0"
