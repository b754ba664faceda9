from .filter import DedupFilter

__all__ = ["DedupFilter"]
