"""Reachability and rough performance checks for Microsoft cloud service endpoints."""

__version__ = "0.3.0"
