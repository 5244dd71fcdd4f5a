"""Updraft: OTA bundle distribution over object storage."""

__version__ = "0.1.0"
