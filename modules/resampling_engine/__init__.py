"""
Resampling Engine
=================

Responsibility:
- Stratified outer resamples (train/holdout partitions) for the RFE engine.
- Persistence of the partition index for reproducibility.
"""

from .resampling_engine import ResamplingEngine, create_partitions

__all__ = ['ResamplingEngine', 'create_partitions']
