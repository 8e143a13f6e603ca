"""graph-tutor: a personal knowledge-graph tutor core."""

__version__ = "0.1.0"
