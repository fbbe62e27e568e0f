"""Event Store Service: sealed append-only audit records and pseudonym mappings."""
