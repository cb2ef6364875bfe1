# rforge/__init__.py
"""rforge - rebuild an RPM system from source, Gentoo style."""

__version__ = "1.0.0"
