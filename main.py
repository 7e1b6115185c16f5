#!/usr/bin/env python3
"""
Academy Award immortal time reanalysis: main script.

Usage:
    python main.py --url URL          # Fetch subject file, then run all analyses
    python main.py                    # Run all analyses on data/oscars.csv
    python main.py --fetch-only --url URL
    python main.py --analysis-only --steps 00 02
    python main.py --rename identity=subject_id --rename final=total_time

No copy of the Academy Award data ships with the repository and there is
no default download location: pass --url or place the file at
data/oscars.csv. The test suite checks the static vs time-varying
attenuation on a simulated cohort only, not on the worked dataset.
"""

import argparse
import os
import runpy
import sys
from datetime import datetime

from fetcher import DatasetFetcher

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
CODE_DIR = os.path.join(BASE_DIR, 'code')
RAW_DATA_FILE = os.path.join(BASE_DIR, 'data', 'oscars.csv')

ANALYSIS_SCRIPTS = [
    '00_build_dataset.py',
    '01_descriptive_statistics.py',
    '02_immortal_time_comparison.py',
    '03_km_curves_plot.py',
    '04_landmark_analysis.py',
    '05_pooled_logistic.py',
    '06_schoenfeld_diagnostic.py',
]


def setup_directories():
    """Create required directories"""
    dirs = ['data', 'results', 'figures']
    for d in dirs:
        os.makedirs(os.path.join(BASE_DIR, d), exist_ok=True)


def fetch_dataset(url: str, refresh: bool = False, retry: int = 3,
                  timeout: float = 30.0) -> bool:
    """Fetch the subject file into data/"""
    print("=" * 60)
    print("Step 1: Fetch subject data")
    print("=" * 60)

    fetcher = DatasetFetcher(timeout=timeout)
    path = fetcher.fetch(url, RAW_DATA_FILE, retry=retry, refresh=refresh)
    if path is None:
        return False
    fetcher.save_report(os.path.join(BASE_DIR, 'data', 'fetch_report.json'))
    return True


def select_scripts(steps):
    """Numbered scripts whose prefix is in steps (all when steps is empty)"""
    if not steps:
        return list(ANALYSIS_SCRIPTS)
    selected = [s for s in ANALYSIS_SCRIPTS if s.split('_', 1)[0] in steps]
    unknown = set(steps) - {s.split('_', 1)[0] for s in selected}
    if unknown:
        raise ValueError(f"Unknown steps: {', '.join(sorted(unknown))}")
    return selected


def run_analyses(scripts, script_args):
    """Run each numbered analysis script as __main__"""
    print("\n" + "=" * 60)
    print("Step 2: Analyses")
    print("=" * 60)

    saved_argv = sys.argv
    try:
        for script in scripts:
            path = os.path.join(CODE_DIR, script)
            print(f"\n>>> {script}")
            sys.argv = [path] + (script_args if script.startswith('00_') else [])
            runpy.run_path(path, run_name='__main__')
    finally:
        sys.argv = saved_argv


def main():
    parser = argparse.ArgumentParser(
        description='Academy Award immortal time reanalysis',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python main.py --url https://host/path/oscars.csv
    python main.py --analysis-only --steps 00 02 03
    python main.py --refresh --url https://host/path/oscars.csv
        """
    )

    parser.add_argument('--url',
                        help='Location of the delimited subject file')
    parser.add_argument('--fetch-only', action='store_true',
                        help='Fetch data only')
    parser.add_argument('--analysis-only', action='store_true',
                        help='Run analyses only (requires data/oscars.csv)')
    parser.add_argument('--refresh', action='store_true',
                        help='Download again even if the file exists')
    parser.add_argument('--steps', nargs='+', default=[],
                        help='Numbered scripts to run, e.g. 00 02 (default: all)')
    parser.add_argument('--rename', action='append', default=[], metavar='SRC=DST',
                        help='Map a source header to a canonical column name')
    parser.add_argument('--retry', type=int, default=3,
                        help='Download attempts (default: 3)')
    parser.add_argument('--timeout', type=float, default=30.0,
                        help='Request timeout in seconds (default: 30)')

    args = parser.parse_args()

    setup_directories()

    print("=" * 60)
    print("Academy Award immortal time reanalysis")
    print(f"Start: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 60)

    try:
        if not args.analysis_only:
            if args.url:
                if not fetch_dataset(args.url, refresh=args.refresh,
                                     retry=args.retry, timeout=args.timeout):
                    print(f"Error: could not download {args.url}")
                    sys.exit(1)
            elif not os.path.exists(RAW_DATA_FILE):
                print(f"Error: {RAW_DATA_FILE} not found. Pass --url or place the file there.")
                sys.exit(1)
            elif args.fetch_only:
                print(f"Nothing to fetch: no --url given, using {RAW_DATA_FILE}")

        if not args.fetch_only:
            script_args = []
            for pair in args.rename:
                script_args += ['--rename', pair]
            run_analyses(select_scripts(args.steps), script_args)

        print("\n" + "=" * 60)
        print("Complete!")
        print(f"End: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        print("=" * 60)

    except KeyboardInterrupt:
        print("\n\nInterrupted by user.")
        sys.exit(1)
    except Exception as e:
        print(f"\nError: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
