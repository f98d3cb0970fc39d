"""OctoPrint Manager: one OctoPrint container per USB-attached printer."""

__version__ = "0.1.0"
