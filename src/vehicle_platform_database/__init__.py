"""Multi-tenant data-access core of the Vehicle Platform."""

__version__ = "0.1.0"
