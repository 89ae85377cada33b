"""Ingestion dashboard back-end: pipeline triggering and run tracking."""
