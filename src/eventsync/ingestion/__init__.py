"""
Ingestion layer: source adapters, per-source pipelines, the fallback merger,
content fingerprints and the reconciliation orchestrator.
"""
