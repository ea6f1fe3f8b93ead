"""Command dispatch core: routing, lane decisions and the approval workflow."""

__version__ = "0.1.0"
