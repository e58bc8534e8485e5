"""Tenantflow SDK - shared helpers for the orchestration core."""
