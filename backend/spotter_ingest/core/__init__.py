"""Ingestion core for the Spotter Network loader.

Fetcher -> CheckpointTracker -> Normalizer -> SinkWriter, driven by the
IngestOrchestrator. Import from the submodules directly; this package keeps no
re-exports so that adapters and core modules can import each other freely.
"""
