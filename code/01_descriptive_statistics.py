"""
01_descriptive_statistics.py
──────────────────────────────────────────────────────────────────────
Descriptive statistics for the winner / control cohort.
  - Cohort composition and deaths
  - Follow-up by static group
  - Person-time by time-varying state, and the immortal person-time that
    the static grouping credits to winners
──────────────────────────────────────────────────────────────────────
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'utils'))

import pandas as pd
import warnings
warnings.filterwarnings('ignore')

from data_pipeline import (
    load_cohort, load_person_time, immortal_person_time,
    STATIC_GROUP, TIME_VARYING_GROUP,
)

RESULTS_DIR = os.path.join(os.path.dirname(__file__), '..', 'results')


def follow_up_by_group(cohort):
    """Per static group: subjects, deaths, follow-up mean/median/range."""
    rows = []
    for label, value in [('Controls', 0), ('Winners', 1)]:
        g = cohort[cohort['win'] == value]
        ft = g['total_time']
        rows.append({
            'group': label,
            'n': len(g),
            'deaths': int(g['death'].sum()),
            'follow_up_mean': ft.mean(),
            'follow_up_median': ft.median(),
            'follow_up_min': ft.min(),
            'follow_up_max': ft.max(),
            'award_time_median': g['award_time'].median() if value == 1 else float('nan'),
        })
    return pd.DataFrame(rows)


def person_time_by_state(panel):
    """Person-time and deaths under each grouping, with crude death rates."""
    rows = []
    for grouping, col in [('static', STATIC_GROUP), ('time_varying', TIME_VARYING_GROUP)]:
        for value, label in [(0, 'control'), (1, 'winner')]:
            rows_g = panel[panel[col] == value]
            pt = len(rows_g)
            deaths = int(rows_g['event'].sum())
            rows.append({
                'grouping': grouping,
                'state': label,
                'person_time': pt,
                'deaths': deaths,
                'rate_per_1000': 1000 * deaths / pt if pt else float('nan'),
            })
    return pd.DataFrame(rows)


def main():
    print("=" * 70)
    print("DESCRIPTIVE STATISTICS")
    print("=" * 70)

    cohort = load_cohort()
    panel = load_person_time()

    # ================================================================
    # 1. COHORT
    # ================================================================
    print(f"\n1. COHORT")
    print(f"   Subjects: {len(cohort)}, deaths: {int(cohort['death'].sum())}")
    fu = follow_up_by_group(cohort)
    print(f"\n   {'Group':<10} {'N':>6} {'Deaths':>7} {'Mean FU':>8} {'Median':>7} "
          f"{'Min':>5} {'Max':>5} {'Award t':>8}")
    print(f"   {'-'*62}")
    for _, r in fu.iterrows():
        print(f"   {r['group']:<10} {r['n']:>6} {r['deaths']:>7} {r['follow_up_mean']:>8.1f} "
              f"{r['follow_up_median']:>7.1f} {r['follow_up_min']:>5.0f} {r['follow_up_max']:>5.0f} "
              f"{r['award_time_median']:>8.1f}")

    # ================================================================
    # 2. PERSON-TIME
    # ================================================================
    print(f"\n" + "=" * 70)
    print("2. PERSON-TIME BY GROUPING")
    print("=" * 70)
    pt = person_time_by_state(panel)
    print(f"\n   {'Grouping':<14} {'State':<8} {'Person-time':>12} {'Deaths':>7} {'Rate/1000':>10}")
    print(f"   {'-'*55}")
    for _, r in pt.iterrows():
        print(f"   {r['grouping']:<14} {r['state']:<8} {r['person_time']:>12,} "
              f"{r['deaths']:>7} {r['rate_per_1000']:>10.2f}")

    immortal = immortal_person_time(panel)
    winner_pt = int((panel[STATIC_GROUP] == 1).sum())
    share = immortal / winner_pt if winner_pt else float('nan')
    print(f"\n   Immortal person-time: {immortal:,} of {winner_pt:,} winner person-time units "
          f"({share:.1%})")
    print("   The static grouping counts this time as exposed even though no")
    print("   winner can die before winning.")

    os.makedirs(RESULTS_DIR, exist_ok=True)
    fu.to_csv(os.path.join(RESULTS_DIR, 'descriptives_follow_up.csv'), index=False)
    pt.to_csv(os.path.join(RESULTS_DIR, 'descriptives_person_time.csv'), index=False)

    print("\nDONE.")


if __name__ == '__main__':
    main()
