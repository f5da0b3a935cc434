"""Lighthouse evidence content store."""
