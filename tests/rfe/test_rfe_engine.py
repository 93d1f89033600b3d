import logging
from unittest.mock import MagicMock

import numpy as np
import pandas as pd
import pytest
from sklearn.model_selection import KFold

from modules.data_manager import FeatureSchema
from modules.model_trainer import FitResult, ModelTrainer, encode_features
from modules.resampling_engine import create_partitions
from modules.rfe import RFEEngine, RFESettings, ResampleTask, StepState, run_step
from utils.exceptions import ResampleFailedError, TrainerError
from utils.worker_pool import WorkerPool
from utils import constants

MODEL_SEED = 100

WEIGHTS = {'x1': 0.5, 'x2': 0.1, 'x3': 0.05, 'x4': 0.01, 'site==a': 0.2, 'site==b': 0.2, 'site==c': 0.2}


class FakeTrainer(ModelTrainer):
    """
    Deterministic stand-in: fixed per-column importance, predictions equal the
    training mean, fold index from KFold.
    """

    def __init__(self, schema, fail_seeds=()):
        self.schema = schema
        self.fail_seeds = set(fail_seeds)
        self.fit_seeds = []

    def build_grid(self, n_predictors):
        return [{'n': n_predictors}]

    def fit(self, train_df, response, grid, cv_folds, cv_repeats=1, seed=None, n_jobs=1):
        self.fit_seeds.append(seed)
        if seed in self.fail_seeds:
            raise TrainerError(f"could not converge (seed {seed})")
        features = [c for c in train_df.columns if c != response]
        encoded = encode_features(train_df, self.schema.restrict(features))
        y = train_df[response].to_numpy(dtype=float)
        folds = list(KFold(n_splits=cv_folds, shuffle=True, random_state=seed).split(y))
        importance = pd.Series([WEIGHTS.get(c, 0.0) for c in encoded.columns], index=encoded.columns)
        return FitResult(
            model=float(y.mean()),
            best_params=grid[0],
            oof_predictions=pd.DataFrame(),
            train_performance={'RMSE': float(len(features)), 'MAE': 1.0, 'Rsquared': 0.5},
            importance=importance,
            folds=folds,
            encoded_columns=list(encoded.columns),
        )

    def predict(self, model, df):
        return np.full(len(df), model)


@pytest.fixture
def schema():
    return FeatureSchema(response='y', numeric=['x1', 'x2', 'x3', 'x4'], categorical=['site'])


@pytest.fixture
def data():
    rng = np.random.default_rng(5)
    n = 60
    return pd.DataFrame({
        'y': rng.normal(size=n),
        'x1': rng.normal(size=n),
        'x2': rng.normal(size=n),
        'site': pd.Categorical(rng.choice(['a', 'b', 'c'], size=n), categories=['a', 'b', 'c']),
        'x3': rng.normal(size=n),
        'x4': rng.normal(size=n),
    })


@pytest.fixture
def partitions(data):
    return create_partitions(data['y'].to_numpy(), p=0.8, times=3, groups=3, seed=123)


def make_engine(tmp_path, trainer, schedule=(5, 3, 1), **rfe):
    config = {
        'rfe': {'schedule': list(schedule), 'cv_folds': 3, **rfe},
        'outputs': {'base_results_dir': str(tmp_path)},
        '_internal_seeds': {'model': MODEL_SEED},
    }
    return RFEEngine(config, MagicMock(spec=logging.Logger), trainer, WorkerPool(n_jobs=1, logger=MagicMock()))


def run_engine(engine, data, schema, partitions):
    with engine.pool:
        return engine.execute(data, schema, partitions)


def read_checkpoints(store):
    return {i: store.path_for(i).read_text() for i in store.completed_indices()}


class TestRFEEngine:

    def test_writes_one_checkpoint_per_resample(self, tmp_path, data, schema, partitions):
        store = run_engine(make_engine(tmp_path, FakeTrainer(schema)), data, schema, partitions)
        assert store.completed_indices() == [1, 2, 3]
        assert store.directory == tmp_path / constants.RUN_CHECKPOINTS_DIR

    def test_rank_conservation_and_monotonicity(self, tmp_path, data, schema, partitions):
        store = run_engine(make_engine(tmp_path, FakeTrainer(schema)), data, schema, partitions)
        for cp in store.load_all():
            ranked = [r['var'] for r in cp.ranks]
            assert sorted(ranked) == sorted(schema.predictors)
            assert len(ranked) == len(set(ranked))
            assert cp.n_predictors == [5, 3, 1]
            assert [p['subset_size'] for p in cp.train_performance] == [5, 3, 1]

    def test_categorical_ranked_as_one_feature(self, tmp_path, data, schema, partitions):
        store = run_engine(make_engine(tmp_path, FakeTrainer(schema)), data, schema, partitions)
        ranks = {r['var']: r['rank'] for r in store.load(1).ranks}
        # site dummies sum to 0.6, above x1 at 0.5
        assert ranks == {'site': 1, 'x1': 2, 'x2': 2, 'x3': 3, 'x4': 3}

    def test_performance_records(self, tmp_path, data, schema, partitions):
        store = run_engine(make_engine(tmp_path, FakeTrainer(schema)), data, schema, partitions)
        cp = store.load(2)
        assert {p['Type'] for p in cp.train_performance} == {constants.TRAIN}
        assert {p['Type'] for p in cp.test_performance} == {constants.TEST}
        assert {p['Type'] for p in cp.null_performance} == {constants.NULL}
        assert [p['RMSE'] for p in cp.train_performance] == [5.0, 3.0, 1.0]

    def test_trainer_seed_depends_on_resample_index(self, tmp_path, data, schema, partitions):
        trainer = FakeTrainer(schema)
        run_engine(make_engine(tmp_path, trainer), data, schema, partitions)
        assert sorted(set(trainer.fit_seeds)) == [MODEL_SEED + 1, MODEL_SEED + 2, MODEL_SEED + 3]

    def test_failed_resample_reported_and_others_kept(self, tmp_path, data, schema, partitions):
        engine = make_engine(tmp_path, FakeTrainer(schema, fail_seeds={MODEL_SEED + 2}))
        with pytest.raises(ResampleFailedError) as excinfo:
            run_engine(engine, data, schema, partitions)
        assert list(excinfo.value.failures) == [2]
        assert "could not converge" in excinfo.value.failures[2]
        assert engine.store.completed_indices() == [1, 3]

    def test_resumption_is_idempotent(self, tmp_path, data, schema, partitions):
        reference = run_engine(make_engine(tmp_path / "full", FakeTrainer(schema)), data, schema, partitions)

        interrupted = make_engine(tmp_path / "resumed", FakeTrainer(schema, fail_seeds={MODEL_SEED + 2}))
        with pytest.raises(ResampleFailedError):
            run_engine(interrupted, data, schema, partitions)
        before = read_checkpoints(interrupted.store)

        trainer = FakeTrainer(schema)
        resumed = run_engine(make_engine(tmp_path / "resumed", trainer), data, schema, partitions)

        # only the missing resample was recomputed
        assert set(trainer.fit_seeds) == {MODEL_SEED + 2}
        after = read_checkpoints(resumed)
        assert {i: after[i] for i in before} == before
        assert after == read_checkpoints(reference)

    def test_nothing_to_do_when_complete(self, tmp_path, data, schema, partitions):
        run_engine(make_engine(tmp_path, FakeTrainer(schema)), data, schema, partitions)
        trainer = FakeTrainer(schema)
        run_engine(make_engine(tmp_path, trainer), data, schema, partitions)
        assert trainer.fit_seeds == []

    def test_schedule_exceeding_predictors_fails_each_resample(self, tmp_path, data, schema, partitions):
        engine = make_engine(tmp_path, FakeTrainer(schema), schedule=(10, 2))
        with pytest.raises(ResampleFailedError) as excinfo:
            run_engine(engine, data, schema, partitions)
        assert list(excinfo.value.failures) == [1, 2, 3]
        assert "requests 10" in excinfo.value.failures[1]
        assert engine.store.completed_indices() == []

    def test_first_entry_below_predictor_count(self, tmp_path, data, schema, partitions):
        engine = make_engine(tmp_path, FakeTrainer(schema), schedule=(4, 2, 1))
        store = run_engine(engine, data, schema, partitions)
        cp = store.load(1)
        assert cp.n_predictors == [5, 2, 1]
        assert [p['subset_size'] for p in cp.train_performance] == [4, 2, 1]
        assert sorted(r['var'] for r in cp.ranks) == sorted(schema.predictors)
        engine.logger.warning.assert_called()

    def test_default_schedule_from_predictor_count(self, tmp_path, schema):
        engine = make_engine(tmp_path, FakeTrainer(schema), schedule=())
        assert engine.resolve_schedule(5) == [5, 4, 3, 2, 1]

    def test_holdout_null_baseline(self, tmp_path, data, schema, partitions):
        engine = make_engine(tmp_path, FakeTrainer(schema), null_baseline="holdout")
        store = run_engine(engine, data, schema, partitions)
        cp = store.load(1)
        test_rows = np.setdiff1d(np.arange(len(data)), partitions[0])
        obs = data['y'].to_numpy()[test_rows]
        expected = np.sqrt(np.mean((obs - data['y'].to_numpy()[partitions[0]].mean()) ** 2))
        assert cp.null_performance[0]['RMSE'] == pytest.approx(expected)


def test_run_step_returns_reduced_state(data, schema):
    settings = RFESettings(schedule=[5, 3, 1], cv_folds=3)
    task = ResampleTask(index=1, train_df=data.iloc[:48], test_df=data.iloc[48:], seed=1)
    state = StepState(step=1, table=task.train_df, features=schema.predictors)

    records, next_state = run_step(state, task, FakeTrainer(schema), schema, settings)

    assert next_state.step == 2
    assert next_state.features == ['x1', 'x2', 'site']
    assert list(next_state.table.columns) == ['y', 'x1', 'x2', 'site']
    assert {r['var'] for r in records['ranks']} == {'x3', 'x4'}
    assert records['train']['n_predictors'] == 5


def test_run_step_final_step_ranks_everything_one(data, schema):
    settings = RFESettings(schedule=[2, 1], cv_folds=3)
    task = ResampleTask(index=1, train_df=data.iloc[:48], test_df=data.iloc[48:], seed=1)
    state = StepState(step=2, table=task.train_df[['y', 'x1']], features=['x1'])

    records, next_state = run_step(state, task, FakeTrainer(schema), schema, settings)
    assert next_state is None
    assert records['ranks'] == [{'var': 'x1', 'rank': 1}]
