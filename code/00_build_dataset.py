#!/usr/bin/env python3
"""
00_build_dataset.py
===================
Reproducible pipeline: oscars.csv -> cohort.csv, person_time.csv

Input:
    data/oscars.csv         (one row per performer: id, follow-up, death,
                             win flag, nomination count, award time unit)

Output:
    data/cohort.csv         (validated winners + never-nominated controls)
    data/person_time.csv    (one row per performer per time unit, with the
                             static `win` flag and the time-varying `win_tv`)

Processing steps:
    1. Load the delimited file and map headers to canonical names
    2. Validate every record (reject, never repair)
    3. Drop nominees who never won
    4. Expand to person-time and assign the time-varying winner flag
    5. Verify panel invariants before writing

The subject file is not bundled with the repository; fetch it with
`main.py --url` or copy it to data/oscars.csv first.
"""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'utils'))

import argparse

from data_pipeline import (
    load_subject_table, validate_subjects, filter_cohort, summarize_cohort,
    expand_person_time, assign_time_varying_group, check_person_time_invariants,
    immortal_person_time, RAW_DATA_FILE, COHORT_FILE, PERSON_TIME_FILE,
)


def parse_rename(pairs):
    """Turn ['SRC=DST', ...] into a header rename map."""
    rename = {}
    for pair in pairs or []:
        if '=' not in pair:
            raise ValueError(f"--rename expects SRC=DST, got {pair!r}")
        src, dst = pair.split('=', 1)
        rename[src.strip()] = dst.strip()
    return rename


def main(rename=None, input_path=RAW_DATA_FILE):
    print("=" * 70)
    print("BUILD DATASET: subjects -> cohort -> person-time")
    print("=" * 70)

    raw = load_subject_table(input_path, rename=rename)
    print(f"\nLoaded {len(raw)} rows from {input_path}")

    subjects = validate_subjects(raw)
    summary = summarize_cohort(subjects)
    print(f"  Validated subjects:        {summary['n_subjects']}")
    print(f"  Excluded nominees (0 wins): {summary['n_excluded_nominees']}")
    print(f"  Cohort: {summary['n_cohort']} "
          f"({summary['n_winners']} winners, {summary['n_controls']} controls), "
          f"{summary['n_deaths']} deaths")

    cohort = filter_cohort(subjects)
    panel = expand_person_time(cohort, show_progress=True)
    panel = assign_time_varying_group(panel)

    problems = check_person_time_invariants(panel, cohort)
    if problems:
        raise ValueError("Person-time panel failed checks:\n  " + "\n  ".join(problems))

    print(f"\nPanel: {len(panel):,} person-time rows, "
          f"{panel['subject_id'].nunique()} subjects, {int(panel['event'].sum())} deaths")
    print(f"  Immortal person-time (winners before award): {immortal_person_time(panel):,}")

    os.makedirs(os.path.dirname(COHORT_FILE), exist_ok=True)
    cohort.to_csv(COHORT_FILE, index=False)
    panel.to_csv(PERSON_TIME_FILE, index=False)
    print(f"\nSaved to {COHORT_FILE}")
    print(f"Saved to {PERSON_TIME_FILE}")
    print("DONE.")


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Build cohort and person-time panel')
    parser.add_argument('--rename', action='append', metavar='SRC=DST',
                        help='Map a source header to a canonical column name')
    parser.add_argument('--input', default=RAW_DATA_FILE,
                        help=f'Subject file (default: {RAW_DATA_FILE})')
    args, _ = parser.parse_known_args()
    main(rename=parse_rename(args.rename), input_path=args.input)
