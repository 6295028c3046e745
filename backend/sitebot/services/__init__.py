"""Ingestion services: crawl provider client, normalization, orchestration and status."""
