"""
Model Trainer
=============

Responsibility:
- Capability interface used by the RFE engine (fit with internal CV, predict, importance).
- Random-forest implementation with grid search over mtry / split rule / node size.
"""

from .base import FitResult, ModelTrainer, TrainedModel
from .random_forest_trainer import RandomForestTrainer, encode_features

__all__ = ['FitResult', 'ModelTrainer', 'TrainedModel', 'RandomForestTrainer', 'encode_features']
