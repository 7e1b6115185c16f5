"""
Survival estimators shared by the analysis scripts.

The same protocol runs once per grouping column on the person-time panel:
product-limit curves, RMST difference, log-rank test and a Cox model.
Curves are lifelines Kaplan-Meier fits on the (start, stop] rows with left
truncation at `start`, so a winner moves from the control curve to the
winner curve at the award time (Simon-Makuch) and the static grouping
reduces to ordinary Kaplan-Meier. Risk sets (start < t <= stop) feed the
log-rank test and the RMST standard error.
"""

import numpy as np
import pandas as pd
from scipy import stats
import statsmodels.api as sm
from patsy import dmatrix
from lifelines import CoxPHFitter, CoxTimeVaryingFitter, KaplanMeierFitter
from lifelines.statistics import proportional_hazard_test
from lifelines.utils import restricted_mean_survival_time

Z_95 = stats.norm.ppf(0.975)

GROUPINGS = [('static', 'win'), ('time_varying', 'win_tv')]


# ============================================================
# Risk Sets and Product-Limit Curves
# ============================================================

def risk_table(panel, group_col):
    """
    Number at risk and number of events per group at every observed stop time.

    All groups share the same time grid, which makes the log-rank sums
    line up without re-indexing.
    """
    times = np.unique(panel['stop'].to_numpy())
    frames = []
    for group, rows in panel.groupby(group_col):
        starts = np.sort(rows['start'].to_numpy())
        stops = np.sort(rows['stop'].to_numpy())
        at_risk = (np.searchsorted(starts, times, side='left')
                   - np.searchsorted(stops, times, side='left'))
        events = (rows.loc[rows['event'] == 1]
                  .groupby('stop').size()
                  .reindex(times, fill_value=0)
                  .to_numpy())
        frames.append(pd.DataFrame({
            'group': int(group),
            'time': times,
            'at_risk': at_risk,
            'events': events,
        }))
    return pd.concat(frames, ignore_index=True)


def _require_two_groups(risk, group_col):
    present = sorted(risk['group'].unique())
    if present != [0, 1]:
        raise ValueError(f"{group_col} must take both values 0 and 1, found {present}")


def fit_product_limit(panel, group_col, group):
    """
    Kaplan-Meier fit for one group on the (start, stop] rows.

    Each row enters at `start` (left truncation), so a winner's rows join
    the winner curve at the award time (Simon-Makuch).
    """
    rows = panel[panel[group_col] == group]
    # timeline from 0 even when the group's first entry is later (S = 1 there)
    timeline = np.union1d([0], rows['stop'].to_numpy())
    kmf = KaplanMeierFitter(label=f"{group_col}={group}")
    kmf.fit(rows['stop'], event_observed=rows['event'], entry=rows['start'],
            timeline=timeline)
    return kmf


def product_limit(kmf, risk, group):
    """
    Fitted curve on the group's observed times (plus time 0), with the
    number at risk, events and lifelines' log-log 95% band.
    """
    rows = risk[(risk['group'] == group) & (risk['at_risk'] > 0)]
    times = np.concatenate([[0], rows['time'].to_numpy()])
    surv = kmf.survival_function_at_times(times).to_numpy()

    band = kmf.confidence_interval_survival_function_.reindex(times, method='ffill')
    lower = band.iloc[:, 0].to_numpy()
    upper = band.iloc[:, 1].to_numpy()
    # no band where the curve is flat at 1 or has reached 0
    lower = np.where(np.isnan(lower), surv, lower)
    upper = np.where(np.isnan(upper), surv, upper)

    at_risk = rows['at_risk'].to_numpy()
    return pd.DataFrame({
        'time': times,
        'at_risk': np.concatenate([[at_risk[0] if len(at_risk) else 0], at_risk]),
        'events': np.concatenate([[0], rows['events'].to_numpy()]),
        'survival': surv,
        'ci_lower': lower,
        'ci_upper': upper,
    })


def survival_at(curve, times):
    """Right-continuous step lookup of a product-limit curve."""
    idx = np.searchsorted(curve['time'].to_numpy(), np.asarray(times), side='right') - 1
    return curve['survival'].to_numpy()[idx]


# ============================================================
# Restricted Mean Survival Time
# ============================================================

def default_tau(risk):
    """Largest horizon both groups are observed to: the smaller last follow-up time."""
    observed = risk[risk['at_risk'] > 0]
    return float(observed.groupby('group')['time'].max().min())


def restricted_mean(kmf, curve, tau):
    """
    RMST up to tau from lifelines, and its standard error.

    The variance sums A_j^2 d_j / (n_j (n_j - d_j)) over event times before
    tau, where A_j is the area under the curve from t_j to tau.
    """
    if tau <= 0:
        raise ValueError(f"tau must be positive, got {tau}")
    rmst = restricted_mean_survival_time(kmf, t=tau)

    times = curve['time'].to_numpy(dtype=float)
    keep = times < tau
    knots = np.append(times[keep], tau)
    areas = curve['survival'].to_numpy()[keep] * np.diff(knots)
    tail = np.cumsum(areas[::-1])[::-1]

    n = curve['at_risk'].to_numpy(dtype=float)[keep]
    d = curve['events'].to_numpy(dtype=float)[keep]
    with np.errstate(divide='ignore', invalid='ignore'):
        terms = np.where((d > 0) & (n > d), tail ** 2 * d / (n * (n - d)), 0.0)

    return float(rmst), float(np.sqrt(terms.sum()))


def rmst_difference(fits, curves, tau):
    """RMST per group and the (group 1 - group 0) difference with a z test."""
    rmst_0, se_0 = restricted_mean(fits[0], curves[0], tau)
    rmst_1, se_1 = restricted_mean(fits[1], curves[1], tau)
    diff = rmst_1 - rmst_0
    se = np.sqrt(se_0 ** 2 + se_1 ** 2)
    z = diff / se if se > 0 else np.nan
    return {
        'tau': tau,
        'rmst_0': rmst_0, 'se_0': se_0,
        'rmst_1': rmst_1, 'se_1': se_1,
        'diff': diff,
        'diff_lower': diff - Z_95 * se,
        'diff_upper': diff + Z_95 * se,
        'z': z,
        'p': float(2 * stats.norm.sf(abs(z))) if np.isfinite(z) else np.nan,
    }


# ============================================================
# Log-Rank Test
# ============================================================

def logrank(risk):
    """Two-group log-rank test on a shared-grid risk table (1 df chi-square)."""
    wide = risk.pivot(index='time', columns='group', values=['at_risk', 'events']).fillna(0)
    n0 = wide[('at_risk', 0)].to_numpy(dtype=float)
    n1 = wide[('at_risk', 1)].to_numpy(dtype=float)
    d0 = wide[('events', 0)].to_numpy(dtype=float)
    d1 = wide[('events', 1)].to_numpy(dtype=float)
    n = n0 + n1
    d = d0 + d1

    keep = d > 0
    n, n0, n1, d, d1 = n[keep], n0[keep], n1[keep], d[keep], d1[keep]
    expected_1 = d * n1 / n
    with np.errstate(divide='ignore', invalid='ignore'):
        variance = np.where(n > 1, n1 * n0 * d * (n - d) / (n ** 2 * (n - 1)), 0.0)

    observed_1 = d1.sum()
    statistic = (observed_1 - expected_1.sum()) ** 2 / variance.sum()
    return {
        'observed_0': float(d.sum() - observed_1),
        'expected_0': float(d.sum() - expected_1.sum()),
        'observed_1': float(observed_1),
        'expected_1': float(expected_1.sum()),
        'statistic': float(statistic),
        'p': float(stats.chi2.sf(statistic, 1)),
    }


# ============================================================
# Regression Models
# ============================================================

def fit_cox(panel, group_col, penalizer=0.0):
    """Cox model on (start, stop] intervals with the grouping flag as sole covariate."""
    data = panel[['subject_id', 'start', 'stop', 'event', group_col]]
    ctv = CoxTimeVaryingFitter(penalizer=penalizer)
    ctv.fit(data, id_col='subject_id', event_col='event',
            start_col='start', stop_col='stop', show_progress=False)
    return ctv


def hazard_ratio(model, covariate):
    """HR, 95% CI and p-value for one covariate of a fitted lifelines model."""
    row = model.summary.loc[covariate]
    return {
        'coef': float(row['coef']),
        'hr': float(row['exp(coef)']),
        'hr_lower': float(row['exp(coef) lower 95%']),
        'hr_upper': float(row['exp(coef) upper 95%']),
        'p': float(row['p']),
    }


def partial_aic(model):
    return -2 * model.log_likelihood_ + 2 * len(model.summary)


def extract_hr_table(model, label=''):
    """Extract HR, CI, p-value from a fitted lifelines Cox model."""
    if model is None:
        return pd.DataFrame()
    summary = model.summary
    return pd.DataFrame({
        'grouping': label,
        'variable': summary.index,
        'coef': summary['coef'],
        'HR': summary['exp(coef)'],
        'HR_lower': summary['exp(coef) lower 95%'],
        'HR_upper': summary['exp(coef) upper 95%'],
        'p': summary['p'],
    })


def fit_pooled_logistic(panel, group_col, spline_df=4):
    """
    Discrete-time hazard model: logit P(event at t | at risk) with a
    natural cubic regression spline in time and the grouping flag.
    Returns (model, odds ratio dict).
    """
    X = dmatrix(f"cr(time, df={spline_df}, constraints='center')", panel,
                return_type='dataframe')
    X = X.reset_index(drop=True)
    X[group_col] = panel[group_col].to_numpy()
    X = sm.add_constant(X, has_constant='skip')
    model = sm.Logit(panel['event'].to_numpy(), X).fit(disp=0, maxiter=200)

    ci = model.conf_int().loc[group_col]
    return model, {
        'coef': float(model.params[group_col]),
        'or': float(np.exp(model.params[group_col])),
        'or_lower': float(np.exp(ci.iloc[0])),
        'or_upper': float(np.exp(ci.iloc[1])),
        'p': float(model.pvalues[group_col]),
    }


def ph_test_static(cohort):
    """Schoenfeld-residual test of proportional hazards for the static win flag."""
    data = cohort[['total_time', 'death', 'win']]
    cph = CoxPHFitter()
    cph.fit(data, duration_col='total_time', event_col='death', show_progress=False)
    result = proportional_hazard_test(cph, data, time_transform='rank')
    row = result.summary.iloc[0]
    return {
        'test_statistic': float(row['test_statistic']),
        'p': float(row['p']),
    }


# ============================================================
# Static vs Time-Varying Comparison
# ============================================================

def run_estimators(panel, group_col, tau=None):
    """The four estimators for one grouping column."""
    risk = risk_table(panel, group_col)
    _require_two_groups(risk, group_col)
    fits = {g: fit_product_limit(panel, group_col, g) for g in (0, 1)}
    curves = {g: product_limit(fits[g], risk, g) for g in (0, 1)}
    if tau is None:
        tau = default_tau(risk)

    model = fit_cox(panel, group_col)
    return {
        'group_col': group_col,
        'risk': risk,
        'fits': fits,
        'curves': curves,
        'rmst': rmst_difference(fits, curves, tau),
        'logrank': logrank(risk),
        'cox': hazard_ratio(model, group_col),
        'model': model,
    }


def compare_groupings(panel, tau=None, groupings=GROUPINGS):
    """
    Run the estimators under each grouping with a common RMST horizon.

    Returns a dict keyed by grouping label, plus 'table' holding the
    side-by-side summary.
    """
    if tau is None:
        taus = []
        for _, col in groupings:
            risk = risk_table(panel, col)
            _require_two_groups(risk, col)
            taus.append(default_tau(risk))
        tau = min(taus)

    results = {label: run_estimators(panel, col, tau=tau) for label, col in groupings}
    results['table'] = summary_table({label: results[label] for label, _ in groupings})
    return results


def summary_table(results):
    """Metric rows by grouping columns."""
    columns = {}
    for label, res in results.items():
        cox, lr, rm = res['cox'], res['logrank'], res['rmst']
        columns[label] = {
            'HR': cox['hr'],
            'HR lower 95%': cox['hr_lower'],
            'HR upper 95%': cox['hr_upper'],
            'Cox p': cox['p'],
            'Log-rank chi2': lr['statistic'],
            'Log-rank p': lr['p'],
            'tau': rm['tau'],
            'RMST control': rm['rmst_0'],
            'RMST winner': rm['rmst_1'],
            'RMST diff': rm['diff'],
            'RMST diff lower 95%': rm['diff_lower'],
            'RMST diff upper 95%': rm['diff_upper'],
            'RMST p': rm['p'],
        }
    return pd.DataFrame(columns)


def attenuation(comparison, reference='static', corrected='time_varying'):
    """Whether the corrected HR sits closer to 1 than the reference HR."""
    hr_ref = comparison[reference]['cox']['hr']
    hr_cor = comparison[corrected]['cox']['hr']
    return {
        'hr_' + reference: hr_ref,
        'hr_' + corrected: hr_cor,
        'attenuated': bool(abs(np.log(hr_cor)) < abs(np.log(hr_ref))),
    }


# ============================================================
# Formatting
# ============================================================

def format_hr(hr, ci_low, ci_high, p, decimals=3):
    """Format HR with CI and statistical significance stars."""
    stars = ''
    if p < 0.001:
        stars = '***'
    elif p < 0.01:
        stars = '**'
    elif p < 0.05:
        stars = '*'

    return f"{hr:.{decimals}f}{stars} [{ci_low:.{decimals}f}, {ci_high:.{decimals}f}]"


def format_p(p):
    if p < 0.001:
        return "<0.001"
    return f"{p:.3f}"
