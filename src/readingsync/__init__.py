"""Export and reconcile reading highlights from Kindle and Apple Books."""

__version__ = "0.1.0"
