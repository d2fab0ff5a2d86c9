"""Prepares and launches Minecraft versions from their JSON definitions."""

__version__ = '1.0.0'
