"""Fact-checking claim pipeline with a durable job queue."""

__version__ = "0.1.0"
