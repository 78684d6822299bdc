"""
Utility functions for the backup backend.
"""

from .fs import async_rmtree, list_tree_files

__all__ = ["async_rmtree", "list_tree_files"]
