"""Provisioning engine."""
