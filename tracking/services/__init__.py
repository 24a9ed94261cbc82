"""Tracking services module."""
