"""areadecode package

Cross-session trial-outcome decoding from area-level spike features.
"""

from .vocabulary import AreaVocabulary
from .features import FeatureExtractor, FeatureSchema, FeatureVector
from .assembly import DatasetAssembler, Dataset, DatasetSplit, build_dataset
from .analysis.model import ModelTrainer, ModelEvaluator, TrainedModel, EvaluationReport

__version__ = "0.1.0"

__all__ = [
    "AreaVocabulary",
    "FeatureExtractor",
    "FeatureSchema",
    "FeatureVector",
    "DatasetAssembler",
    "Dataset",
    "DatasetSplit",
    "build_dataset",
    "ModelTrainer",
    "ModelEvaluator",
    "TrainedModel",
    "EvaluationReport",
]
