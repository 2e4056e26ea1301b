"""Visitor logging service: one reconciled record per visit, append-only storage."""
