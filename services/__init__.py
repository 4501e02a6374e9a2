"""Shared services for MedFoundry."""
