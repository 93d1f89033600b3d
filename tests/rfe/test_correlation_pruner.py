import logging
from unittest.mock import MagicMock

import numpy as np
import pandas as pd
import pytest

from modules.data_manager import FeatureSchema
from modules.rfe import CorrelationPruner
from utils import constants


@pytest.fixture
def data():
    rng = np.random.default_rng(0)
    base = rng.normal(size=100)
    other = rng.normal(size=100)
    return pd.DataFrame({
        'y': rng.normal(size=100),
        'a': base,
        'b': base + rng.normal(scale=0.01, size=100),
        'c': -base + rng.normal(scale=0.01, size=100),
        'd': other,
        'site': pd.Categorical(rng.choice(['x', 'z'], size=100)),
    })


@pytest.fixture
def schema():
    return FeatureSchema(response='y', numeric=['a', 'b', 'c', 'd'], categorical=['site'])


@pytest.fixture
def rank_table():
    return pd.DataFrame({
        'var': ['d', 'b', 'site', 'a', 'c'],
        'mean': [1.0, 2.0, 2.5, 3.0, 4.0],
    })


def test_pairs_and_drops(data, schema, rank_table):
    result = CorrelationPruner.prune(data, rank_table, schema, threshold=0.9)

    pairs = set(zip(result.pairs['var1'], result.pairs['var2']))
    assert pairs == {('b', 'a'), ('b', 'c'), ('a', 'c')}
    assert result.pairs['correlation'].abs().is_monotonic_decreasing
    # b outranks a and c; a outranks c
    assert sorted(result.dropped) == ['a', 'c']
    assert result.schema.predictors == ['b', 'd', 'site']
    assert list(result.data.columns) == ['y', 'b', 'd', 'site']


def test_ties_drop_first_member(schema):
    rng = np.random.default_rng(1)
    base = rng.normal(size=50)
    data = pd.DataFrame({'y': base, 'a': base, 'b': base * 2.0, 'c': rng.normal(size=50), 'd': rng.normal(size=50),
                         'site': pd.Categorical(['x'] * 50)})
    rank_table = pd.DataFrame({'var': ['a', 'b', 'c', 'd'], 'mean': [2.0, 2.0, 3.0, 4.0]})
    result = CorrelationPruner.prune(data, rank_table, schema, threshold=0.9)
    assert result.dropped == ['a']


def test_pruning_is_deterministic(data, schema, rank_table):
    first = CorrelationPruner.prune(data, rank_table, schema, threshold=0.9)
    second = CorrelationPruner.prune(data, rank_table, schema, threshold=0.9)
    pd.testing.assert_frame_equal(first.pairs, second.pairs)
    assert first.dropped == second.dropped


def test_no_pairs(data, schema, rank_table):
    result = CorrelationPruner.prune(data, rank_table, schema, threshold=0.99999)
    assert result.pairs.empty
    assert result.dropped == []
    assert result.schema == schema
    pd.testing.assert_frame_equal(result.data, data)


def test_categorical_never_considered(data, schema, rank_table):
    result = CorrelationPruner.prune(data, rank_table, schema, threshold=0.5)
    assert 'site' not in set(result.pairs['var1']) | set(result.pairs['var2'])


def test_execute_persists_outputs(tmp_path, data, schema, rank_table):
    config = {'outputs': {'base_results_dir': str(tmp_path)}}
    pruner = CorrelationPruner(config, MagicMock(spec=logging.Logger))
    result = pruner.execute(data, rank_table, schema, 0.9)

    out = tmp_path / constants.RUN_CORRELATION_DIR
    assert (out / constants.CORRELATION_PAIRS_FILE).exists()
    assert (out / constants.DROPPED_FEATURES_FILE).exists()
    reduced = pd.read_parquet(out / constants.REDUCED_DATA_FILE)
    assert list(reduced.columns) == list(result.data.columns)
