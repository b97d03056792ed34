"""Mentee progression and outcome ledger."""
