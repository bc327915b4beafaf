"""Ledger core: split allocation, validation and balance computation."""
