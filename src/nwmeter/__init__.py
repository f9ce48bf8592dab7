"""Combat log meter for Neverwinter Nights chat logs."""

__version__ = "0.1.0"
