from pathlib import Path
from typing import Dict, Any, Optional, Tuple
from dataclasses import dataclass
import os


def find_project_root() -> Path:
    """
    Find the project root directory by walking up from the current
    directory and looking for common project markers.
    """
    current = Path.cwd()
    for parent in [current] + list(current.parents):
        if any((parent / marker).exists() for marker in [
            "pyproject.toml", ".git", "README.md"
        ]):
            return parent
    return current


def get_output_directory() -> Path:
    """
    Get the output directory, honouring the AREADECODE_OUTPUT_DIR
    environment variable before falling back to <project root>/outputs.
    """
    if "AREADECODE_OUTPUT_DIR" in os.environ:
        return Path(os.environ["AREADECODE_OUTPUT_DIR"])
    return find_project_root() / "outputs"


@dataclass(frozen=True)
class ExperimentConfig:
    """Configuration for experimental parameters."""
    # Visual stimulus contrast levels presented on either side.
    contrast_levels: Tuple[float, ...] = None

    # feedbackType codes as stored in the session records.
    feedback_labels: Dict[int, str] = None

    # One 0-0.4 s window at 10 ms resolution.
    expected_time_bins: int = 40
    bin_width_s: float = 0.01

    def __post_init__(self):
        if self.contrast_levels is None:
            object.__setattr__(self, 'contrast_levels', (0.0, 0.25, 0.5, 1.0))
        if self.feedback_labels is None:
            object.__setattr__(self, 'feedback_labels', {1: "success", -1: "failure"})

    @property
    def class_labels(self) -> Tuple[str, ...]:
        """Class labels in reporting order (positive class first)."""
        return tuple(self.feedback_labels[code] for code in sorted(self.feedback_labels, reverse=True))


@dataclass(frozen=True)
class FeatureConfig:
    """Configuration for feature extraction."""
    # "lexicographic" or "first_seen" (session order, then neuron order).
    vocabulary_ordering: str = "lexicographic"

    # How areas a session never recorded are represented:
    #   "zero"      -> 0.0 in all three slots
    #   "nan"       -> NaN in all three slots
    #   "indicator" -> 0.0 plus one recorded__<area> 0/1 column per area
    missing_area_policy: str = "zero"

    # Worker count for per-session extraction (joblib semantics).
    n_jobs: int = 1
    show_progress: bool = True

    def __post_init__(self):
        if self.vocabulary_ordering not in ("lexicographic", "first_seen"):
            raise ValueError(f"Unknown vocabulary ordering: {self.vocabulary_ordering}")
        if self.missing_area_policy not in ("zero", "nan", "indicator"):
            raise ValueError(f"Unknown missing-area policy: {self.missing_area_policy}")


@dataclass(frozen=True)
class SplitConfig:
    """Configuration for the stratified train/validation split."""
    train_fraction: float = 0.8
    random_seed: int = 141

    def __post_init__(self):
        if not (0.0 < self.train_fraction < 1.0):
            raise ValueError(f"train_fraction {self.train_fraction} must be in (0, 1)")


@dataclass(frozen=True)
class ModelConfig:
    """Configuration for the bagged-tree classifier."""
    n_estimators: int = 500
    max_features: str = "sqrt"
    bootstrap: bool = True
    random_state: int = 141
    n_jobs: int = -1

    # None measures the class imbalance as-is; "balanced" corrects for it.
    class_weight: Optional[str] = None


@dataclass(frozen=True)
class ValidationConfig:
    """Thresholds for non-fatal data-quality checks."""
    min_neurons_per_session: int = 10
    min_trials_per_session: int = 20
    # Warn when either class makes up less than this share of a session.
    min_class_fraction: float = 0.1
    # Warn when more than this share of neurons never spike.
    max_silent_neuron_fraction: float = 0.5


@dataclass(frozen=True)
class FilesystemConfig:
    """Configuration for filesystem paths."""
    output_dir: Path = None
    cache_dir: Path = None

    features_file: str = "features.csv"
    model_file: str = "model.joblib"
    report_file: str = "report.json"
    cache_file_suffix: str = "_sessions.pkl"

    def __post_init__(self):
        if self.output_dir is None:
            object.__setattr__(self, 'output_dir', get_output_directory())
        if self.cache_dir is None:
            object.__setattr__(self, 'cache_dir', self.output_dir.parent / "cache")


# Global configuration instances
EXPERIMENT_CONFIG = ExperimentConfig()
FEATURE_CONFIG = FeatureConfig()
SPLIT_CONFIG = SplitConfig()
MODEL_CONFIG = ModelConfig()
VALIDATION_CONFIG = ValidationConfig()
FILESYSTEM_CONFIG = FilesystemConfig()

SUCCESS_LABEL = EXPERIMENT_CONFIG.feedback_labels[1]
FAILURE_LABEL = EXPERIMENT_CONFIG.feedback_labels[-1]


def set_output_directory(path: str | Path) -> None:
    """
    Override the default output directory.
    The cache directory is moved alongside it.
    """
    path = Path(path)
    object.__setattr__(FILESYSTEM_CONFIG, 'output_dir', path)
    object.__setattr__(FILESYSTEM_CONFIG, 'cache_dir', path.parent / "cache")


def get_config_summary() -> Dict[str, Any]:
    """Get a summary of all configuration settings."""
    return {
        "experiment": {
            "contrast_levels": list(EXPERIMENT_CONFIG.contrast_levels),
            "feedback_labels": dict(EXPERIMENT_CONFIG.feedback_labels),
            "expected_time_bins": EXPERIMENT_CONFIG.expected_time_bins,
            "bin_width_s": EXPERIMENT_CONFIG.bin_width_s,
        },
        "features": {
            "vocabulary_ordering": FEATURE_CONFIG.vocabulary_ordering,
            "missing_area_policy": FEATURE_CONFIG.missing_area_policy,
            "n_jobs": FEATURE_CONFIG.n_jobs,
        },
        "split": {
            "train_fraction": SPLIT_CONFIG.train_fraction,
            "random_seed": SPLIT_CONFIG.random_seed,
        },
        "model": {
            "n_estimators": MODEL_CONFIG.n_estimators,
            "max_features": MODEL_CONFIG.max_features,
            "bootstrap": MODEL_CONFIG.bootstrap,
            "random_state": MODEL_CONFIG.random_state,
            "class_weight": MODEL_CONFIG.class_weight,
        },
        "filesystem": {
            "output_dir": str(FILESYSTEM_CONFIG.output_dir),
            "cache_dir": str(FILESYSTEM_CONFIG.cache_dir),
            "output_dir_exists": FILESYSTEM_CONFIG.output_dir.exists(),
        },
    }
