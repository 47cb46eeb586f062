"""School Event Management System."""

__version__ = "1.0.0"
