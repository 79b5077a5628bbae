"""abengine: experiment assignment and analysis engine."""

__version__ = "1.0.0"
