"""Core pipeline: frame decoding, event log, tailers and reconciliation."""
