"""Operator bundle model, plain and registry+v1 bundle handling, a bundle controller and CRD upgrade checks."""

__version__ = "0.1.0"