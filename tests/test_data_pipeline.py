"""Tests for loading, validation, cohort filtering and person-time expansion."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from data_pipeline import (
    load_subject_table, validate_subjects, filter_cohort, excluded_nominees,
    expand_person_time, assign_time_varying_group, build_person_time_panel,
    build_landmark_cohort, check_person_time_invariants, immortal_person_time,
    summarize_cohort, load_person_time,
)


def _rows_for(panel, sid):
    return panel[panel['subject_id'] == sid].sort_values('time')


# ============================================================
# Loading
# ============================================================

def test_load_subject_table_sniffs_delimiter_and_renames(tmp_path):
    path = tmp_path / 'oscars.tsv'
    path.write_text(
        "Identity\tFinal\tDeath\tWin\tNoms\tAward_Time\n"
        "1\t10\t1\t1\t2\t4\n"
        "2\t5\t0\t0\t0\t\n"
    )
    df = load_subject_table(str(path), rename={'identity': 'subject_id',
                                               'Final': 'total_time',
                                               'noms': 'nominations'})
    assert list(df.columns) == ['subject_id', 'total_time', 'death', 'win',
                                'nominations', 'award_time']
    assert len(df) == 2
    assert np.isnan(df.loc[1, 'award_time'])


def test_load_subject_table_adds_missing_award_time(tmp_path):
    path = tmp_path / 'controls.csv'
    path.write_text("subject_id,total_time,death,win,nominations\n1,4,0,0,0\n2,7,1,0,0\n")
    df = load_subject_table(str(path))
    assert 'award_time' in df.columns
    assert df['award_time'].isna().all()


def test_load_missing_file_names_path(tmp_path):
    missing = tmp_path / 'nope.csv'
    with pytest.raises(FileNotFoundError, match='nope.csv'):
        load_subject_table(str(missing))


def test_load_person_time_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError, match='00_build_dataset'):
        load_person_time(str(tmp_path / 'person_time.csv'))


# ============================================================
# Validation
# ============================================================

def test_validate_accepts_toy_table(toy_subjects):
    out = validate_subjects(toy_subjects)
    assert out['total_time'].dtype.kind == 'i'
    assert out['win'].dtype.kind == 'i'
    assert len(out) == len(toy_subjects)


def test_validate_does_not_modify_input(toy_subjects):
    before = toy_subjects.copy()
    validate_subjects(toy_subjects)
    pd.testing.assert_frame_equal(toy_subjects, before)


def test_validate_missing_column(toy_subjects):
    with pytest.raises(ValueError, match='nominations'):
        validate_subjects(toy_subjects.drop(columns=['nominations']))


@pytest.mark.parametrize('total_time', [0, -3])
def test_validate_rejects_non_positive_total_time(make_subjects, total_time):
    df = make_subjects([('a', total_time, 0, 0, 0, np.nan), ('b', 4, 1, 0, 0, np.nan)])
    with pytest.raises(ValueError, match='Non-positive total_time: subject_id a'):
        validate_subjects(df)


def test_validate_rejects_fractional_total_time(make_subjects):
    df = make_subjects([('a', 2.5, 0, 0, 0, np.nan)])
    with pytest.raises(ValueError, match='Non-integer total_time'):
        validate_subjects(df)


@pytest.mark.parametrize('total_time', [np.inf, -np.inf])
def test_validate_rejects_non_finite_total_time(make_subjects, total_time):
    df = make_subjects([('a', total_time, 0, 0, 0, np.nan), ('b', 4, 1, 0, 0, np.nan)])
    with pytest.raises(ValueError, match='Non-finite total_time: subject_id a'):
        validate_subjects(df)


def test_validate_rejects_infinite_award_time(make_subjects):
    df = make_subjects([('w', 10, 1, 1, 1, np.inf)])
    with pytest.raises(ValueError, match='award_time must be a positive integer'):
        validate_subjects(df)


def test_validate_rejects_winner_without_award_time(make_subjects):
    df = make_subjects([('w', 10, 1, 1, 2, np.nan), ('c', 4, 0, 0, 0, np.nan)])
    with pytest.raises(ValueError, match='Winner with no award_time: subject_id w'):
        validate_subjects(df)


def test_validate_rejects_winner_without_nominations(make_subjects):
    df = make_subjects([('w', 10, 1, 1, 0, 3)])
    with pytest.raises(ValueError, match='zero nominations'):
        validate_subjects(df)


def test_validate_rejects_non_positive_award_time(make_subjects):
    df = make_subjects([('w', 10, 1, 1, 1, 0)])
    with pytest.raises(ValueError, match='award_time must be a positive integer'):
        validate_subjects(df)


def test_validate_rejects_bad_flags(make_subjects):
    df = make_subjects([('a', 3, 2, 0, 0, np.nan)])
    with pytest.raises(ValueError, match='death must be 0 or 1'):
        validate_subjects(df)


def test_validate_rejects_duplicate_ids(make_subjects):
    df = make_subjects([('a', 3, 0, 0, 0, np.nan), ('a', 5, 1, 0, 0, np.nan)])
    with pytest.raises(ValueError, match='Duplicate subject ids'):
        validate_subjects(df)


def test_validate_lists_only_first_offenders(make_subjects):
    df = make_subjects([(f's{i}', 0, 0, 0, 0, np.nan) for i in range(8)])
    with pytest.raises(ValueError, match=r'\(8 total\)'):
        validate_subjects(df)


def test_validate_clears_award_time_for_non_winners(make_subjects):
    df = make_subjects([('n', 6, 0, 0, 2, 3), ('w', 6, 0, 1, 1, 2)])
    out = validate_subjects(df)
    assert np.isnan(out.loc[0, 'award_time'])
    assert out.loc[1, 'award_time'] == 2


# ============================================================
# Cohort filter
# ============================================================

def test_filter_drops_nominees_only(toy_subjects):
    cohort = filter_cohort(validate_subjects(toy_subjects))
    assert sorted(cohort['subject_id']) == ['c1', 'c2', 'w1', 'w2']
    assert list(excluded_nominees(validate_subjects(toy_subjects))['subject_id']) == ['n1']


def test_filter_keeps_zero_nomination_zero_win_control(make_subjects):
    df = validate_subjects(make_subjects([('c', 5, 0, 0, 0, np.nan)]))
    assert len(filter_cohort(df)) == 1


def test_filter_is_idempotent(simulated_subjects):
    once = filter_cohort(simulated_subjects)
    twice = filter_cohort(once)
    pd.testing.assert_frame_equal(once, twice)


def test_summarize_cohort(toy_subjects):
    summary = summarize_cohort(validate_subjects(toy_subjects))
    assert summary['n_subjects'] == 5
    assert summary['n_excluded_nominees'] == 1
    assert summary['n_winners'] == 2
    assert summary['n_controls'] == 2
    assert summary['n_deaths'] == 2


# ============================================================
# Expansion and time-varying assignment
# ============================================================

def test_winner_scenario(make_subjects):
    subjects = validate_subjects(make_subjects([('w', 10, 1, 1, 1, 4)]))
    panel = build_person_time_panel(subjects)
    rows = _rows_for(panel, 'w')
    assert len(rows) == 10
    assert rows['time'].tolist() == list(range(1, 11))
    assert rows['event'].tolist() == [0] * 9 + [1]
    assert rows['win_tv'].tolist() == [0, 0, 0, 1, 1, 1, 1, 1, 1, 1]
    assert (rows['win'] == 1).all()


def test_control_scenario(make_subjects):
    subjects = validate_subjects(make_subjects([('c', 5, 0, 0, 0, np.nan)]))
    panel = build_person_time_panel(subjects)
    rows = _rows_for(panel, 'c')
    assert len(rows) == 5
    assert (rows['event'] == 0).all()
    assert rows['win_tv'].nunique() == 1
    assert rows['win_tv'].iloc[0] == 0


def test_start_stop_intervals(toy_subjects):
    panel = expand_person_time(filter_cohort(validate_subjects(toy_subjects)))
    assert ((panel['stop'] - panel['start']) == 1).all()
    assert (panel['stop'] == panel['time']).all()


def test_award_in_first_unit_exposes_every_row(toy_subjects):
    panel = build_person_time_panel(validate_subjects(toy_subjects))
    assert (_rows_for(panel, 'w2')['win_tv'] == 1).all()


def test_award_after_follow_up_never_exposes(make_subjects):
    subjects = validate_subjects(make_subjects([('p', 6, 1, 1, 1, 9)]))
    panel = build_person_time_panel(subjects)
    assert (panel['win_tv'] == 0).all()
    assert (panel['win'] == 1).all()


def test_expand_rejects_non_positive_total_time(make_subjects):
    df = make_subjects([('z', 0, 0, 0, 0, np.nan)])
    with pytest.raises(ValueError, match='Cannot expand'):
        expand_person_time(df)


def test_assign_rejects_winner_without_award_time(make_subjects):
    df = make_subjects([('w', 3, 0, 1, 1, np.nan)])
    panel = expand_person_time(df)
    with pytest.raises(ValueError, match='Winner with no award_time'):
        assign_time_varying_group(panel)


def test_assign_returns_new_frame(toy_subjects):
    panel = expand_person_time(filter_cohort(validate_subjects(toy_subjects)))
    out = assign_time_varying_group(panel)
    assert 'win_tv' in out.columns
    assert 'win_tv' not in panel.columns


def test_row_count_matches_total_time(simulated_cohort, simulated_panel):
    counts = simulated_panel.groupby('subject_id').size()
    expected = simulated_cohort.set_index('subject_id')['total_time']
    pd.testing.assert_series_equal(counts.sort_index(), expected.sort_index(),
                                   check_names=False)


def test_event_only_on_last_row(simulated_cohort, simulated_panel):
    last = simulated_panel.groupby('subject_id')['time'].transform('max')
    assert (simulated_panel.loc[simulated_panel['time'] < last, 'event'] == 0).all()
    deaths = simulated_panel.groupby('subject_id')['event'].sum()
    expected = simulated_cohort.set_index('subject_id')['death']
    assert (deaths.sort_index().to_numpy() == expected.sort_index().to_numpy()).all()


def test_time_varying_flag_rule(simulated_panel):
    winners = simulated_panel[simulated_panel['win'] == 1]
    expected = (winners['time'] >= winners['award_time']).astype(int)
    assert (winners['win_tv'] == expected).all()
    controls = simulated_panel[simulated_panel['win'] == 0]
    assert (controls['win_tv'] == 0).all()


def test_panel_passes_invariant_checks(simulated_cohort, simulated_panel):
    assert check_person_time_invariants(simulated_panel, simulated_cohort) == []


def test_invariant_checks_catch_problems(toy_subjects):
    cohort = filter_cohort(validate_subjects(toy_subjects))
    panel = build_person_time_panel(validate_subjects(toy_subjects))

    early_event = panel.copy()
    early_event.loc[(early_event['subject_id'] == 'c1') & (early_event['time'] == 1), 'event'] = 1
    assert any('event before last row' in p for p in check_person_time_invariants(early_event, cohort))

    reverted = panel.copy()
    reverted.loc[(reverted['subject_id'] == 'w1') & (reverted['time'] == 10), 'win_tv'] = 0
    assert any('win_tv decreases' in p for p in check_person_time_invariants(reverted, cohort))

    truncated = panel[~((panel['subject_id'] == 'c1') & (panel['time'] == 5))]
    assert any('row count' in p for p in check_person_time_invariants(truncated, cohort))


def test_immortal_person_time(toy_subjects):
    panel = build_person_time_panel(validate_subjects(toy_subjects))
    # w1: units 1-3 before the award; w2 won in unit 1
    assert immortal_person_time(panel) == 3


# ============================================================
# Landmark cohort
# ============================================================

def test_landmark_cohort(make_subjects):
    subjects = validate_subjects(make_subjects([
        ('early', 20, 1, 1, 1, 3),
        ('late', 20, 0, 1, 2, 12),
        ('short', 5, 1, 0, 0, np.nan),
        ('ctrl', 15, 0, 0, 0, np.nan),
    ]))
    lm = build_landmark_cohort(filter_cohort(subjects), landmark=5).set_index('subject_id')
    assert 'short' not in lm.index
    assert lm.loc['early', 'win'] == 1
    assert lm.loc['late', 'win'] == 0
    assert np.isnan(lm.loc['late', 'award_time'])
    assert lm.loc['early', 'total_time'] == 15
    assert lm.loc['ctrl', 'total_time'] == 10

    panel = assign_time_varying_group(expand_person_time(lm.reset_index()))
    assert (panel.groupby('subject_id')['win_tv'].nunique() == 1).all()
    assert len(panel) == 15 + 15 + 10
