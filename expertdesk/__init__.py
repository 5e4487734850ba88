"""Expert routing and moderation-reputation engine."""

__version__ = "0.1.0"
