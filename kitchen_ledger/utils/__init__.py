"""Utilities package for the kitchen ledger."""
