"""Quarry — extraction-coordination store."""
