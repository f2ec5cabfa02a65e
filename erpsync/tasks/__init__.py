"""Concrete task adapters, one module per vendor API area."""
