"""Listkeeper: shared task lists with recurring tasks."""

__version__ = "0.1.0"
