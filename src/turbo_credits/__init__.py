"""Cross-chain credit purchase tracker."""

__version__ = "0.1.0"
