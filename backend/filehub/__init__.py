"""filehub: content-addressed file sharing service."""

__version__ = "1.0.0"
