"""Workspace materialization."""

from .materializer import copy_tree, materialize

__all__ = ["copy_tree", "materialize"]
