"""Retention Policy Engine: classification-driven archive and delete sweeps."""
