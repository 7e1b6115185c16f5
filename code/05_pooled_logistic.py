"""
05_pooled_logistic.py
Discrete-time hazard sensitivity check: pooled logistic regression on the
person-time panel with a natural cubic spline in time, static vs
time-varying flag.
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'utils'))

import pandas as pd
import warnings
warnings.filterwarnings('ignore')

from data_pipeline import load_person_time
from survival_models import fit_pooled_logistic, format_hr, format_p, GROUPINGS

RESULTS_DIR = os.path.join(os.path.dirname(__file__), '..', 'results')
SPLINE_DF = 4


def main():
    print("=" * 70)
    print("POOLED LOGISTIC (DISCRETE-TIME HAZARD)")
    print("=" * 70)

    panel = load_person_time()

    rows = []
    for label, col in GROUPINGS:
        model, est = fit_pooled_logistic(panel, col, spline_df=SPLINE_DF)
        print(f"\n  [{label}] OR = {format_hr(est['or'], est['or_lower'], est['or_upper'], est['p'])}, "
              f"p = {format_p(est['p'])}, AIC = {model.aic:.1f}")
        rows.append({'grouping': label, **est, 'aic': model.aic})

    out = pd.DataFrame(rows)
    os.makedirs(RESULTS_DIR, exist_ok=True)
    out_path = os.path.join(RESULTS_DIR, 'pooled_logistic.csv')
    out.to_csv(out_path, index=False)
    print(f"\nSaved to {out_path}")
    print("DONE.")


if __name__ == '__main__':
    main()
