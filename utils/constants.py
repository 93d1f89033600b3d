# utils/constants.py

# --- Top-Level Result Directories ---
# Sequentially numbered for proper sorting with clear, self-explanatory names

CONFIG_DIR = "01_RunConfiguration"          # Run config, metadata, seeds
DATA_INTEGRITY_DIR = "02_DataQualityChecks"  # Validated data, column stats
FINAL_MODEL_DIR = "99_FinalModel"            # Fixed-feature model fit

# --- Per-RFE-Run Sub-Directories ---
# Each configured run (run0, run1, ...) gets its own folder with these children.
RUN_PARTITIONS_DIR = "01_Partitions"           # Outer resample index
RUN_CHECKPOINTS_DIR = "02_Checkpoints"         # One bundle per outer resample
RUN_TIDY_RESULTS_DIR = "03_TidyResults"        # Rank and performance tables
RUN_CORRELATION_DIR = "04_CorrelationPruning"  # Pairs, drop list, reduced data

RUN_STRUCTURE_DIRS = [
    RUN_PARTITIONS_DIR,
    RUN_CHECKPOINTS_DIR,
    RUN_TIDY_RESULTS_DIR,
    RUN_CORRELATION_DIR,
]

# --- File Names ---
CONFIG_USED_FILE = "config_used.json"
CONFIG_HASH_FILE = "config_hash.txt"
RUN_METADATA_FILE = "run_metadata.json"
PARTITION_INDEX_FILE = "partition_index.parquet"
CHECKPOINT_MANIFEST_FILE = "manifest.json"
CHECKPOINT_FILE_TEMPLATE = "checkpoint_resample_{index:03d}.json"
PERFORMANCE_TABLE_FILE = "performance_table.parquet"
RANK_TABLE_FILE = "rank_table.parquet"
CORRELATION_PAIRS_FILE = "correlation_pairs.parquet"
DROPPED_FEATURES_FILE = "dropped_features.json"
REDUCED_DATA_FILE = "reduced_data.parquet"

# --- Evaluation Types & Metrics ---
TRAIN = "Train"
TEST = "Test"
NULL = "Null"
EVALUATION_TYPES = [TRAIN, TEST, NULL]

RMSE = "RMSE"
MAE = "MAE"
RSQUARED = "Rsquared"
METRICS = [RMSE, MAE, RSQUARED]

# Reserved subset_size for the aggregated null baseline
NULL_SUBSET_SIZE = 0

# Separator between a categorical feature name and its level in encoded columns.
# Must not occur in column names.
DUMMY_SEPARATOR = "=="

# --- Final Model Artifacts ---
FINAL_MODEL_FILE = "final_model.pkl"
FINAL_MODEL_METADATA_FILE = "final_model_metadata.json"
FINAL_PREDOBS_FILE = "final_predobs.parquet"
