"""autosender: queued, serialized submission of job applications."""

__version__ = "0.1.0"
