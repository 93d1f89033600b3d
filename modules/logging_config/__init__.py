"""
Logging Configuration
=====================

Responsibility:
- Root logger setup shared by every engine.
- Colored console output and a rotating UTF-8 pipeline log.
"""

from .logging_config import ColoredFormatter, LoggingConfigurator

__all__ = ['ColoredFormatter', 'LoggingConfigurator']
