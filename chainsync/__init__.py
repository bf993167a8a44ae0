"""Blockchain cache synchronization for the crowdfunding platform."""

__version__ = "0.1.0"
