"""
03_km_curves_plot.py
Survival curves for winners vs controls: static flag (left) and
time-varying flag (right), with 95% bands and RMST horizon.
"""
import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'utils'))

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import warnings
warnings.filterwarnings('ignore')

from data_pipeline import load_person_time
from survival_models import compare_groupings, format_hr, GROUPINGS

FIG_DIR = os.path.join(os.path.dirname(__file__), '..', 'figures')

COLORS = {0: '#3498DB', 1: '#E74C3C'}
LABELS = {0: 'Control', 1: 'Winner'}
TITLES = {'static': 'Winner status fixed at entry',
          'time_varying': 'Winner status from award onward'}


def plot_comparison(comparison, out_path):
    fig, axes = plt.subplots(1, 2, figsize=(14, 6), sharey=True)

    for ax, (label, _) in zip(axes, GROUPINGS):
        res = comparison[label]
        for group, curve in res['curves'].items():
            ax.step(curve['time'], curve['survival'], where='post',
                    color=COLORS[group], linewidth=2, label=LABELS[group])
            ax.fill_between(curve['time'], curve['ci_lower'], curve['ci_upper'],
                            step='post', alpha=0.15, color=COLORS[group])

        tau = res['rmst']['tau']
        ax.axvline(tau, color='gray', linestyle='--', linewidth=1, alpha=0.7)

        cox = res['cox']
        ax.set_title(f"{TITLES[label]}\nHR = "
                     f"{format_hr(cox['hr'], cox['hr_lower'], cox['hr_upper'], cox['p'], decimals=2)}",
                     fontsize=13)
        ax.set_xlabel('Follow-up time', fontsize=12)
        ax.spines['top'].set_visible(False)
        ax.spines['right'].set_visible(False)
        ax.legend(fontsize=11, loc='lower left', framealpha=0.95)

    axes[0].set_ylabel('Survival probability', fontsize=12)
    axes[0].set_ylim(0, 1.02)

    plt.tight_layout()
    fig.savefig(out_path, dpi=300, bbox_inches='tight', facecolor='white')
    plt.close(fig)


def main():
    print("=" * 70)
    print("KAPLAN-MEIER FIGURE")
    print("=" * 70)

    panel = load_person_time()
    comparison = compare_groupings(panel)

    os.makedirs(FIG_DIR, exist_ok=True)
    out_path = os.path.join(FIG_DIR, 'km_static_vs_time_varying.png')
    plot_comparison(comparison, out_path)
    print(f"  Saved: {out_path}")
    print("DONE.")


if __name__ == '__main__':
    main()
