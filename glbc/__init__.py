"""Naming, storage and reconciliation of L7 cloud load balancer resources."""

__version__ = "0.9.5"

__all__ = ["compute", "utils", "pools", "configmaps", "fakes", "l7", "pool"]