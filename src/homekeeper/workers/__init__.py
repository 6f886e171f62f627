"""Standalone background runners."""
