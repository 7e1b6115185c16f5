"""
04_landmark_analysis.py
Landmark alternative to the time-varying flag: performers still under
follow-up at the landmark are classified by whether they had won by then,
and follow-up restarts at the landmark. Same four estimators per landmark.
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'utils'))

import pandas as pd
import warnings
warnings.filterwarnings('ignore')

from data_pipeline import (
    load_cohort, build_landmark_cohort, expand_person_time,
    assign_time_varying_group, LANDMARKS,
)
from survival_models import run_estimators, format_hr, format_p

RESULTS_DIR = os.path.join(os.path.dirname(__file__), '..', 'results')


def landmark_results(cohort, landmarks=LANDMARKS):
    """One summary row per landmark; landmarks without both groups are skipped."""
    rows = []
    for landmark in landmarks:
        lm = build_landmark_cohort(cohort, landmark)
        n_winners = int((lm['win'] == 1).sum())
        if lm.empty or n_winners == 0 or n_winners == len(lm) or lm['death'].sum() == 0:
            print(f"\n  [landmark {landmark}] Skipped ({len(lm)} subjects, {n_winners} winners)")
            continue

        panel = assign_time_varying_group(expand_person_time(lm))
        res = run_estimators(panel, 'win')
        cox, lr, rm = res['cox'], res['logrank'], res['rmst']
        print(f"\n  [landmark {landmark}] n={len(lm)} ({n_winners} winners), "
              f"deaths={int(lm['death'].sum())}")
        print(f"    HR = {format_hr(cox['hr'], cox['hr_lower'], cox['hr_upper'], cox['p'])}")
        print(f"    Log-rank p = {format_p(lr['p'])}, "
              f"RMST diff (tau={rm['tau']:.0f}) = {rm['diff']:+.2f}, p = {format_p(rm['p'])}")

        rows.append({
            'landmark': landmark,
            'n': len(lm),
            'n_winners': n_winners,
            'deaths': int(lm['death'].sum()),
            'hr': cox['hr'],
            'hr_lower': cox['hr_lower'],
            'hr_upper': cox['hr_upper'],
            'cox_p': cox['p'],
            'logrank_p': lr['p'],
            'tau': rm['tau'],
            'rmst_diff': rm['diff'],
            'rmst_p': rm['p'],
        })
    return pd.DataFrame(rows)


def main():
    print("=" * 70)
    print("LANDMARK ANALYSIS")
    print("=" * 70)

    cohort = load_cohort()
    results = landmark_results(cohort)

    os.makedirs(RESULTS_DIR, exist_ok=True)
    out_path = os.path.join(RESULTS_DIR, 'landmark.csv')
    results.to_csv(out_path, index=False)
    print(f"\nSaved to {out_path}")
    print("DONE.")


if __name__ == '__main__':
    main()
