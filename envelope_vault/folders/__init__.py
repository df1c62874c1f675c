from .access import FolderAccessRegistry, KeyScope
from .tree import FolderTree

__all__ = ["FolderAccessRegistry", "FolderTree", "KeyScope"]
