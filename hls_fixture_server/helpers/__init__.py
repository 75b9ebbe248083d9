"""Helpers for the HLS Fixture Server."""
