"""
Blocking filesystem helpers run off the event loop.
"""

import os
import shutil
from pathlib import Path
from typing import List

from asyncer import asyncify


@asyncify
def async_rmtree(path: Path):
    """Asynchronously remove a directory tree."""
    shutil.rmtree(path)


@asyncify
def list_tree_files(root: Path) -> List[Path]:
    """Asynchronously collect every regular file below ``root``, sorted."""
    files = []
    for dirpath, _dirnames, filenames in os.walk(root):
        files.extend(Path(dirpath) / filename for filename in filenames)
    return sorted(files)
