#!/usr/bin/env python
"""
Resampled RFE Pipeline - Main Entry Point
Runs recursive feature elimination over repeated stratified resamples, prunes
correlated features between runs and fits the final model.
"""
import sys
import logging
import argparse
import traceback
import random
from pathlib import Path

import numpy as np

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent))

from modules.config_manager import ConfigurationManager
from modules.logging_config import LoggingConfigurator
from modules.data_manager import DataManager
from modules.final_model import FinalModelEngine
from modules.rfe import RFEController
from utils.exceptions import RFEPipelineError
from utils.worker_pool import WorkerPool


def parse_arguments(argv=None):
    """
    Parse command-line arguments for configurable pipeline execution.
    """
    parser = argparse.ArgumentParser(
        description="Resampled Recursive Feature Elimination Pipeline",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument(
        "--config",
        type=str,
        default="config/config.json",
        help="Path to the configuration JSON file"
    )

    parser.add_argument(
        "--schema",
        type=str,
        default="config/schema.json",
        help="Path to the configuration JSON schema"
    )

    parser.add_argument(
        "--run-id",
        type=str,
        default=None,
        help="Optional run identifier appended to the results directory"
    )

    parser.add_argument(
        "--resume",
        action="store_true",
        help="Resume an existing results directory; completed resamples are skipped"
    )

    parser.add_argument(
        "--skip-final-model",
        action="store_true",
        help="Stop after the RFE runs"
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and setup without running the pipeline"
    )

    return parser.parse_args(argv)


def setup_global_determinism(config: dict, logger: logging.Logger):
    """Seed python and numpy global RNGs."""
    seed = config.get('resampling', {}).get('seed', 123)
    logger.info(f"Setting Global Deterministic Seed: {seed}")
    random.seed(seed)
    np.random.seed(seed)


def setup_run_directory(config: dict, run_id: str = None, resume: bool = False, logger: logging.Logger = None):
    """
    Setup or resume the results directory.

    Returns:
        tuple: (run_dir Path, run_id string)
    """
    base_results_dir = config.get('outputs', {}).get('base_results_dir', 'results')
    run_dir = Path(f"{base_results_dir}_{run_id}" if run_id else base_results_dir).absolute()

    if resume:
        if not run_dir.exists():
            raise RFEPipelineError(f"Cannot resume: directory '{run_dir}' does not exist")
        if logger:
            logger.info(f"Resuming from existing run: {run_dir.name}")
    else:
        run_dir.mkdir(parents=True, exist_ok=True)
        if logger:
            logger.info(f"Using run directory: {run_dir.name}")

    return run_dir, run_id or run_dir.name


def main(argv=None):
    """
    Main pipeline orchestration function.

    Returns:
        int: Exit code (0 success, 1 pipeline/unexpected error, 130 interrupted)
    """
    logger = None

    try:
        args = parse_arguments(argv)

        print("\n" + "=" * 80)
        print("    RESAMPLED RECURSIVE FEATURE ELIMINATION PIPELINE")
        print("=" * 80 + "\n")

        # ---------------------------------------------------------------
        # PHASE 0: INITIALIZATION & VALIDATION
        # ---------------------------------------------------------------
        config_manager = ConfigurationManager(config_path=args.config, schema_path=args.schema)
        config = config_manager.load_and_validate()

        if args.verbose:
            config.setdefault('logging', {})['level'] = 'DEBUG'

        logging_configurator = LoggingConfigurator(config)
        logging_configurator.setup()
        logger = logging_configurator.get_logger('pipeline')
        logger.info(f"Configuration loaded from: {args.config}")

        run_dir, run_id = setup_run_directory(config, run_id=args.run_id, resume=args.resume, logger=logger)
        config_manager.run_id = run_id
        config.setdefault('outputs', {})['base_results_dir'] = str(run_dir)

        config_manager.save_artifacts(str(run_dir))
        setup_global_determinism(config, logger)

        logger.info(f"Run ID: {run_id}")
        logger.info(f"Output Directory: {run_dir}")
        logger.info(f"Runs: {[(r['name'], r.get('correlation_threshold')) for r in config['runs']]}")

        if args.dry_run:
            logger.info("Dry run mode: validation complete. Exiting without running pipeline.")
            print("\n[SUCCESS] Configuration validated successfully.")
            return 0

        # ---------------------------------------------------------------
        # PHASE 1: DATA INGESTION
        # ---------------------------------------------------------------
        logger.info("\n" + "=" * 60)
        logger.info("PHASE 1: DATA INGESTION")
        logger.info("=" * 60)

        data, schema = DataManager(config, logger).execute(run_id)
        logger.info(f"Data loaded: {len(data)} rows, {len(schema.predictors)} predictors")

        # ---------------------------------------------------------------
        # PHASE 2: RESAMPLED RFE RUNS
        # ---------------------------------------------------------------
        logger.info("\n" + "=" * 60)
        logger.info("PHASE 2: RESAMPLED RECURSIVE FEATURE ELIMINATION")
        logger.info("=" * 60)

        execution = config.get('execution', {})
        with WorkerPool(n_jobs=execution.get('n_jobs', 1),
                        backend=execution.get('backend', 'loky'),
                        logger=logger) as pool:
            outcomes = RFEController(config, logger, pool).run(data, schema)

        # ---------------------------------------------------------------
        # PHASE 3: FINAL MODEL
        # ---------------------------------------------------------------
        final_enabled = config.get('final_model', {}).get('enabled', True)
        if args.skip_final_model or not final_enabled:
            logger.info("PHASE 3: FINAL MODEL SKIPPED")
        elif outcomes:
            logger.info("\n" + "=" * 60)
            logger.info("PHASE 3: FINAL MODEL")
            logger.info("=" * 60)
            last = outcomes[-1]
            summary = FinalModelEngine(config, logger).execute(last.data, last.rank_table, last.schema)
            logger.info(f"Final model features: {summary['features']}")

        logger.info("\n" + "-" * 60)
        logger.info("PIPELINE COMPLETED SUCCESSFULLY")
        logger.info(f"Output Directory: {run_dir}")
        logger.info("-" * 60 + "\n")

        print(f"\n[SUCCESS] Pipeline completed. Results saved to: {run_dir}")
        return 0

    except RFEPipelineError as e:
        msg = f"Pipeline Error: {str(e)}"
        print(f"\n[ERROR] {msg}")
        if logger:
            logger.critical(msg, exc_info=True)
        else:
            traceback.print_exc()
        return 1

    except KeyboardInterrupt:
        print("\n[INTERRUPTED] Pipeline interrupted by user.")
        if logger:
            logger.warning("Pipeline interrupted by user (Ctrl+C)")
        return 130

    except Exception as e:
        msg = f"Unexpected Error: {str(e)}"
        print(f"\n[CRITICAL] {msg}")
        if logger:
            logger.critical(msg, exc_info=True)
        else:
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
