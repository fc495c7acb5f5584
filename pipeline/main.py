import argparse
import traceback
from pathlib import Path
import pandas as pd

from analysis.errors import AnalyticsError
from pipeline.config import AnalysisConfig, load_config
from pipeline.runner import BiometricAnalysisPipeline


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Analyze daily biometric records.")
    parser.add_argument('--config', default='config.yaml', help="YAML configuration file")
    parser.add_argument('--data', required=True, help="CSV of daily records with a date column")
    parser.add_argument('--output', default=None, help="Output directory (overrides config)")
    parser.add_argument('--quiet', action='store_true', help="Suppress progress output")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        config = load_config(args.config)
    except FileNotFoundError:
        print(f"    No config at {args.config}, using defaults")
        config = AnalysisConfig()
    except AnalyticsError as e:
        print(f"❌ CONFIG ERROR: {e}")
        return 1

    if args.output:
        config.output_dir = args.output
    if args.quiet:
        config.verbose = False

    data_path = Path(args.data)
    if not data_path.exists():
        print(f"❌ DATA ERROR: {data_path} not found")
        return 1

    pipeline = BiometricAnalysisPipeline(config)
    try:
        results = pipeline.run(pd.read_csv(data_path))
    except AnalyticsError as e:
        print(f"❌ ANALYSIS FAILED: {e}")
        traceback.print_exc()
        return 1

    pipeline.save_results(results)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
