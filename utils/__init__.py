"""
Utility package setup.

Enables pandas Copy-on-Write globally to cut down on unnecessary DataFrame duplication
while keeping mutation safety. From pandas 3 it is the only mode and the option is deprecated.
"""

import pandas as pd

PANDAS_MAJOR = int(pd.__version__.split('.')[0])

# Reduce implicit copies across the pipeline.
if PANDAS_MAJOR < 3:
    pd.options.mode.copy_on_write = True
