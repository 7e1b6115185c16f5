"""
Shared data processing pipeline for the Academy Award immortal time analyses.
All functions are deterministic and return new frames; inputs are never modified.
"""

import os
import numpy as np
import pandas as pd
from tqdm import tqdm

# ============================================================
# Constants
# ============================================================

DATA_DIR = os.path.join(os.path.dirname(__file__), '..', '..', 'data')
RAW_DATA_FILE = os.path.join(DATA_DIR, 'oscars.csv')
COHORT_FILE = os.path.join(DATA_DIR, 'cohort.csv')
PERSON_TIME_FILE = os.path.join(DATA_DIR, 'person_time.csv')

SUBJECT_COLUMNS = ['subject_id', 'total_time', 'death', 'win',
                   'nominations', 'award_time']
REQUIRED_COLUMNS = ['subject_id', 'total_time', 'death', 'win', 'nominations']

STATIC_GROUP = 'win'
TIME_VARYING_GROUP = 'win_tv'

# Landmark times (in follow-up time units) for the landmark analysis
LANDMARKS = [10, 20, 30]

# Number of offending ids quoted in validation errors
MAX_IDS_IN_ERROR = 5


# ============================================================
# Data Loading
# ============================================================

def load_subject_table(path=RAW_DATA_FILE, rename=None):
    """
    Load the delimited subject file.

    Headers are stripped and lower-cased, then renamed with `rename`
    (source header -> canonical name). The delimiter is sniffed, so
    comma, tab and semicolon files all load.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(
            f"Subject data not found at {path}. Run main.py --url <URL> "
            f"or place the file there."
        )
    df = pd.read_csv(path, sep=None, engine='python')
    df.columns = df.columns.str.strip().str.lower()
    if rename:
        df = df.rename(columns={k.strip().lower(): v for k, v in rename.items()})
    if 'award_time' not in df.columns:
        df['award_time'] = np.nan
    return df


def _format_ids(ids):
    ids = list(ids)
    shown = ', '.join(str(i) for i in ids[:MAX_IDS_IN_ERROR])
    if len(ids) > MAX_IDS_IN_ERROR:
        shown += f", ... ({len(ids)} total)"
    return shown


def _reject(df, mask, reason):
    if mask.any():
        raise ValueError(f"{reason}: subject_id {_format_ids(df.loc[mask, 'subject_id'])}")


def _is_whole(series):
    return np.isclose(series, np.round(series))


def validate_subjects(df):
    """
    Reject malformed subject records before any reshaping.

    Returns a typed copy: integer time/flag columns and a float
    `award_time` that is NaN for everyone who never won.
    """
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {', '.join(missing)}")

    df = df.copy()
    if 'award_time' not in df.columns:
        df['award_time'] = np.nan

    if df['subject_id'].isna().any():
        raise ValueError(f"{int(df['subject_id'].isna().sum())} rows have no subject_id")
    dup = df['subject_id'].duplicated(keep=False)
    _reject(df, dup, "Duplicate subject ids")

    for col in REQUIRED_COLUMNS[1:] + ['award_time']:
        df[col] = pd.to_numeric(df[col], errors='coerce')

    for col in REQUIRED_COLUMNS[1:]:
        _reject(df, df[col].isna(), f"Missing or non-numeric {col}")
        _reject(df, ~np.isfinite(df[col]), f"Non-finite {col}")

    _reject(df, ~_is_whole(df['total_time']), "Non-integer total_time")
    _reject(df, df['total_time'] <= 0, "Non-positive total_time")
    for col in ['death', 'win']:
        _reject(df, ~df[col].isin([0, 1]), f"{col} must be 0 or 1")
    _reject(df, ~_is_whole(df['nominations']) | (df['nominations'] < 0),
            "nominations must be a non-negative integer")

    winners = df['win'] == 1
    _reject(df, winners & (df['nominations'] == 0), "Winner with zero nominations")
    _reject(df, winners & df['award_time'].isna(), "Winner with no award_time")
    bad_award = winners & (~np.isfinite(df['award_time'])
                         | ~_is_whole(df['award_time'])
                         | (df['award_time'] < 1))
    _reject(df, bad_award, "award_time must be a positive integer")

    # Exposure exists only for winners
    df.loc[~winners, 'award_time'] = np.nan

    for col in REQUIRED_COLUMNS[1:]:
        df[col] = df[col].round().astype(int)

    return df[SUBJECT_COLUMNS + [c for c in df.columns if c not in SUBJECT_COLUMNS]]


# ============================================================
# Cohort Definition
# ============================================================

def filter_cohort(df):
    """Keep winners and never-nominated controls; drop nominees who never won."""
    keep = (df['nominations'] == 0) | (df['win'] == 1)
    return df[keep].reset_index(drop=True)


def excluded_nominees(df):
    """Rows removed by filter_cohort (nominated at least once, never won)."""
    return df[(df['nominations'] >= 1) & (df['win'] == 0)].reset_index(drop=True)


def build_landmark_cohort(df, landmark):
    """
    Landmark cohort: subjects still under follow-up after `landmark`.

    Exposure is fixed by whether the award was received by the landmark,
    and follow-up time restarts at the landmark. Winners whose award comes
    later count as unexposed for the whole landmark analysis.
    Expects an already filtered cohort; expand the result directly
    (re-filtering would drop those later winners as nominees).
    """
    at_risk = df[df['total_time'] > landmark].copy()
    won_by_landmark = (at_risk['win'] == 1) & (at_risk['award_time'] <= landmark)
    at_risk['win'] = won_by_landmark.astype(int)
    at_risk['award_time'] = np.where(won_by_landmark, 1.0, np.nan)
    at_risk['total_time'] = at_risk['total_time'] - landmark
    return at_risk.reset_index(drop=True)


# ============================================================
# Person-Time Panel Construction
# ============================================================

def expand_person_time(df, show_progress=False):
    """
    Expand one row per subject into one row per time unit.

    Parameters
    ----------
    df : DataFrame of validated subjects (subject_id, total_time, death,
         win, nominations, award_time)
    show_progress : bool, show a tqdm bar over subjects

    Returns
    -------
    DataFrame with `time` 1..total_time per subject, `start`/`stop`
    columns for counting-process fitters, and `event` set only on the
    final row of subjects who died.
    """
    bad = df['total_time'] <= 0
    _reject(df, bad, "Cannot expand non-positive total_time")

    records = []
    rows = df.iterrows()
    if show_progress:
        rows = tqdm(rows, total=len(df), desc="Expanding person-time", unit="subject")

    for _, row in rows:
        total = int(row['total_time'])
        died = int(row['death'])
        for t in range(1, total + 1):
            records.append({
                'subject_id': row['subject_id'],
                'time': t,
                'start': t - 1,
                'stop': t,
                'event': 1 if (t == total and died) else 0,
                'win': int(row['win']),
                'nominations': int(row['nominations']),
                'award_time': row['award_time'],
            })

    return pd.DataFrame(records, columns=[
        'subject_id', 'time', 'start', 'stop', 'event',
        'win', 'nominations', 'award_time',
    ])


def assign_time_varying_group(panel):
    """
    Add `win_tv`: 0 before the award time unit, 1 from it onward.

    Non-winners keep their static flag on every row, so time before the
    award is never credited to the winners.
    """
    winners = panel['win'] == 1
    _reject(panel, winners & panel['award_time'].isna(), "Winner with no award_time")

    panel = panel.copy()
    exposed = winners & (panel['time'] >= panel['award_time'])
    panel[TIME_VARYING_GROUP] = np.where(winners, exposed.astype(int), panel['win'])
    return panel


def build_person_time_panel(subjects, show_progress=False):
    """Validated subjects -> filtered cohort -> expanded panel with win_tv."""
    cohort = filter_cohort(subjects)
    panel = expand_person_time(cohort, show_progress=show_progress)
    return assign_time_varying_group(panel)


def load_cohort(path=COHORT_FILE):
    """Load the validated, filtered subject table written by 00_build_dataset.py."""
    if not os.path.exists(path):
        raise FileNotFoundError(
            f"Cohort file not found at {path}. Run 00_build_dataset.py first."
        )
    return pd.read_csv(path)


def load_person_time(path=PERSON_TIME_FILE):
    """Load the panel written by 00_build_dataset.py."""
    if not os.path.exists(path):
        raise FileNotFoundError(
            f"Person-time panel not found at {path}. Run 00_build_dataset.py first."
        )
    return pd.read_csv(path)


# ============================================================
# Invariant Checks
# ============================================================

def check_person_time_invariants(panel, subjects):
    """
    Return a list of violated panel invariants (empty when the panel is sound).

    Checks row counts against total_time, contiguity of time units,
    event placement on the last row, and monotone win_tv.
    """
    problems = []
    expected = subjects.set_index('subject_id')['total_time']
    grouped = panel.sort_values(['subject_id', 'time']).groupby('subject_id', sort=False)

    counts = grouped.size()
    absent = expected.index.difference(counts.index)
    if len(absent):
        problems.append(f"no rows for {_format_ids(absent)}")
    mismatched = counts.index[counts != expected.reindex(counts.index)]
    if len(mismatched):
        problems.append(f"row count != total_time for {_format_ids(mismatched)}")

    for sid, rows in grouped:
        times = rows['time'].to_numpy()
        if not np.array_equal(times, np.arange(1, len(times) + 1)):
            problems.append(f"non-contiguous time units for {sid}")
        events = rows['event'].to_numpy()
        if events[:-1].any():
            problems.append(f"event before last row for {sid}")
        if TIME_VARYING_GROUP in rows and (np.diff(rows[TIME_VARYING_GROUP].to_numpy()) < 0).any():
            problems.append(f"win_tv decreases for {sid}")

    return problems


# ============================================================
# Descriptive Summaries
# ============================================================

def immortal_person_time(panel):
    """Person-time of winners before their award (credited to winners by the static flag)."""
    mask = (panel[STATIC_GROUP] == 1) & (panel[TIME_VARYING_GROUP] == 0)
    return int(mask.sum())


def summarize_cohort(subjects):
    """Counts of winners, controls and excluded nominees in a subject table."""
    n_excluded = len(excluded_nominees(subjects))
    cohort = filter_cohort(subjects)
    return {
        'n_subjects': len(subjects),
        'n_excluded_nominees': n_excluded,
        'n_cohort': len(cohort),
        'n_winners': int((cohort['win'] == 1).sum()),
        'n_controls': int((cohort['win'] == 0).sum()),
        'n_deaths': int(cohort['death'].sum()),
        'median_follow_up': float(cohort['total_time'].median()) if len(cohort) else np.nan,
    }
