"""
notegraph - a note relationship and categorization engine.

Given a growing collection of free-text notes, notegraph computes pairwise
textual relatedness, keeps a weighted connection graph between notes, and
sorts every note into a self-organizing hierarchy of categories.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("notegraph")
except PackageNotFoundError:
    __version__ = "0.1.0"
