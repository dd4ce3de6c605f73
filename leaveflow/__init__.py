"""Leaveflow — leave approval workflow and balance ledger engine."""
