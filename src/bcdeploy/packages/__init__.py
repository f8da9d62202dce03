"""App file reading, ordering and manifest rewriting."""

from .appfile import read_package, rewrite_package
from .preprocess import preprocess_package
from .sorter import sort_app_files, sort_packages

__all__ = [
    "read_package",
    "rewrite_package",
    "preprocess_package",
    "sort_app_files",
    "sort_packages",
]
