"""Outer surfaces: REST API and command line interface."""
