# src/cold_mirror/__init__.py
"""
cold-mirror: A concurrent, compressing S3 to cold-archive mirror.

This package backs up every object of an S3-compatible bucket into an archive
bucket as a Snappy-compressed copy with the original metadata, skipping
objects whose archived copy is unchanged, and restores the archive back into
the source store.

The primary entry points for programmatic use are the `BackupPipeline` and
`RestorePipeline` classes.
"""

from typing import List

from cold_mirror.pipeline import BackupPipeline, RestorePipeline

__all__: List[str] = ["BackupPipeline", "RestorePipeline"]
