"""Data-subject-rights processor: export, pseudonymization, and erasure."""
