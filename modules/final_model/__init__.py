"""
Final Model
===========

Responsibility:
- Grid-searched random forest on the top-ranked features of the last RFE run.
- Persistence of the model, its metadata and the out-of-fold prediction summary.
"""

from .final_model_engine import FinalModelEngine, summarize_predictions

__all__ = ['FinalModelEngine', 'summarize_predictions']
