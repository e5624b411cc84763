"""CoverText: SMS self-service for insurance agencies."""

__version__ = "0.1.0"
