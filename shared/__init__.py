"""Helpers shared across service packages."""
