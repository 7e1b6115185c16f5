"""Shared fixtures: a hand-checkable toy table and a simulated cohort with immortal time."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from data_pipeline import validate_subjects, filter_cohort, build_person_time_panel


SUBJECT_FIELDS = ['subject_id', 'total_time', 'death', 'win', 'nominations', 'award_time']


def _make_subjects(rows):
    return pd.DataFrame(rows, columns=SUBJECT_FIELDS)


@pytest.fixture
def make_subjects():
    return _make_subjects


@pytest.fixture
def toy_subjects():
    return _make_subjects([
        ('w1', 10, 1, 1, 2, 4),         # winner, dies at 10, award at 4
        ('c1', 5, 0, 0, 0, np.nan),     # control, censored at 5
        ('n1', 8, 1, 0, 3, np.nan),     # nominee, never won
        ('w2', 6, 0, 1, 1, 1),          # winner from the first time unit
        ('c2', 3, 1, 0, 0, np.nan),     # control, dies at 3
    ])


def _simulate(n: int, seed: int) -> pd.DataFrame:
    """
    No true effect of winning on mortality. A contender is only nominated
    and wins if still alive at the award time, so winners are selected for
    surviving the pre-award period. A separate set of losing nominees is
    drawn independently of survival.
    """
    rng = np.random.default_rng(seed)
    lifetime = np.ceil(rng.exponential(scale=30.0, size=n)).astype(int)
    lifetime = np.maximum(lifetime, 1)
    censor = rng.integers(20, 80, size=n)
    total_time = np.minimum(lifetime, censor)
    death = (lifetime <= censor).astype(int)

    contender = rng.random(n) < 0.4
    proposed_award = rng.integers(1, 40, size=n)
    win = (contender & (proposed_award <= total_time)).astype(int)
    losing_nominee = (win == 0) & (rng.random(n) < 0.1)

    nominations = np.where((win == 1) | losing_nominee, rng.integers(1, 5, size=n), 0)
    award_time = np.where(win == 1, proposed_award, np.nan)

    return pd.DataFrame({
        'subject_id': np.arange(1, n + 1),
        'total_time': total_time,
        'death': death,
        'win': win,
        'nominations': nominations,
        'award_time': award_time,
    })


@pytest.fixture(scope='session')
def simulated_subjects():
    return validate_subjects(_simulate(n=1500, seed=20240601))


@pytest.fixture(scope='session')
def simulated_cohort(simulated_subjects):
    return filter_cohort(simulated_subjects)


@pytest.fixture(scope='session')
def simulated_panel(simulated_subjects):
    return build_person_time_panel(simulated_subjects)
