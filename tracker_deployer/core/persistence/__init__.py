"""Persistence — environment records, locks and the audit ledger."""
