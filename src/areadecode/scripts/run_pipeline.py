"""
Batch run: session records -> feature table -> random forest -> report.

    python -m areadecode.scripts.run_pipeline data/sessions.pkl --output-dir outputs
"""
import argparse
import logging
from pathlib import Path

from areadecode.analysis.model import train_and_evaluate
from areadecode.assembly import build_dataset
from areadecode.dataio.config import FILESYSTEM_CONFIG, get_config_summary, set_output_directory
from areadecode.dataio.loaders import load_store_from_file
from areadecode.dataio.validators import validate_store, validation_summary

logger = logging.getLogger("areadecode.scripts.run_pipeline")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("records", type=Path, help="joblib bundle holding a list of session records")
    parser.add_argument("--output-dir", type=Path, default=None)
    parser.add_argument("--ordering", choices=["lexicographic", "first_seen"], default=None)
    parser.add_argument("--missing-area-policy", choices=["zero", "nan", "indicator"], default=None)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--n-jobs", type=int, default=None)
    parser.add_argument("--no-cache", action="store_true")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )
    if args.output_dir is not None:
        set_output_directory(args.output_dir)
    out = FILESYSTEM_CONFIG.output_dir
    out.mkdir(parents=True, exist_ok=True)
    logger.info(f"--- Starting pipeline with configuration: {get_config_summary()} ---")

    store = load_store_from_file(args.records, use_cache=not args.no_cache)
    validation_summary(validate_store(store)).to_csv(out / "session_validation.csv", index=False)
    store.save_summary(out / "session_summary.csv")

    split = build_dataset(
        store,
        vocabulary_ordering=args.ordering,
        missing_area_policy=args.missing_area_policy,
        n_jobs=args.n_jobs,
        random_seed=args.seed,
    )
    split.dataset.save_csv(out / FILESYSTEM_CONFIG.features_file)

    model, report = train_and_evaluate(split.training, split.validation)
    model.save(out / FILESYSTEM_CONFIG.model_file)
    report.save_json(out / FILESYSTEM_CONFIG.report_file)

    print(f"Validation accuracy: {report.accuracy:.3f}")
    print(f"Confusion matrix (rows true, cols predicted; {report.labels}):")
    print(report.confusion_matrix)
    print("Top features:")
    for name, score in report.ranked_importances[:10]:
        print(f"  {name:40s} {score:.4f}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
