"""Adapter contracts for the two record systems."""
