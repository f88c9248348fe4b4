"""acprelay: bounded, de-duplicated projection of ACP agent turns."""

__version__ = "0.1.0"
