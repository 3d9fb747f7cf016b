"""Utility functions for the contract kernel."""
