import json

import pytest
import numpy as np

from areadecode.analysis.model import (
    ModelEvaluator, ModelTrainer, TrainedModel, train_and_evaluate,
)
from areadecode.assembly import DatasetAssembler, build_dataset
from areadecode.dataio.config import FeatureConfig, ModelConfig
from areadecode.dataio.data_structures import SplitError
from areadecode.dataio.loaders import load_store
from areadecode.features import FeatureExtractor
from areadecode.vocabulary import AreaVocabulary


@pytest.fixture(scope="module")
def decoding_split(decoding_store):
    return build_dataset(decoding_store, random_seed=141)


@pytest.fixture(scope="module")
def fitted(decoding_split):
    config = ModelConfig(n_estimators=50, random_state=0, n_jobs=1)
    return train_and_evaluate(decoding_split.training, decoding_split.validation, config)


class TestTraining:

    def test_decodes_informative_features(self, fitted):
        _, report = fitted
        assert report.accuracy >= 0.8

    def test_session_id_is_not_a_feature(self, fitted, decoding_split):
        model, _ = fitted
        assert "session_id" not in model.feature_names
        assert "feedback" not in model.feature_names
        assert list(model.feature_names) == decoding_split.dataset.feature_names

    def test_importances_cover_every_feature(self, fitted):
        model, _ = fitted
        importance = model.feature_importance()
        assert set(importance) == set(model.feature_names)
        assert all(v >= 0 for v in importance.values())
        assert sum(importance.values()) == pytest.approx(1.0)

    def test_late_rates_rank_high(self, fitted):
        model, _ = fitted
        top = [name for name, _ in model.ranked_importance()[:5]]
        assert any(name.startswith(("late_rate__", "total_spikes__")) for name in top)

    def test_classes(self, fitted):
        model, _ = fitted
        assert sorted(model.classes) == ["failure", "success"]

    def test_fit_is_reproducible(self, decoding_split, small_forest):
        a = ModelTrainer(small_forest).fit(decoding_split.training)
        b = ModelTrainer(small_forest).fit(decoding_split.training)
        assert a.feature_importance() == b.feature_importance()

    def test_single_class_training_is_split_error(self, make_record, small_forest):
        record = make_record(np.random.RandomState(2), ["CA1"], 12)
        record["feedbackType"] = [-1] * 12
        dataset = DatasetAssembler(FeatureConfig(show_progress=False)).assemble(load_store([record]))
        with pytest.raises(SplitError, match="single-class"):
            ModelTrainer(small_forest).fit(dataset)


class TestPrediction:

    def test_predict_accepts_sequence_mapping_and_vector(self, fitted, decoding_split, decoding_store):
        model, _ = fitted
        dataset = decoding_split.dataset
        row = dataset.X[0]
        expected = model.predict(row)
        assert expected in ("success", "failure")
        assert model.predict(list(row)) == expected
        assert model.predict(dict(zip(dataset.feature_names, row))) == expected
        assert model.predict(dataset.vectors[0]) == expected

    def test_predict_rejects_wrong_width(self, fitted):
        model, _ = fitted
        with pytest.raises(ValueError, match="expects"):
            model.predict([0.0, 1.0])

    def test_predict_rejects_missing_columns(self, fitted):
        model, _ = fitted
        with pytest.raises(KeyError, match="missing"):
            model.predict({"contrast_left": 0.0})

    def test_predict_rejects_stale_vector(self, fitted, decoding_store):
        model, _ = fitted
        other = AreaVocabulary.build(decoding_store, ordering="first_seen")
        session = decoding_store[0]
        vector = FeatureExtractor(other).extract(session.trials[0], session)
        with pytest.raises(ValueError, match="vocabulary"):
            model.predict(vector)

    def test_save_and_load(self, fitted, decoding_split, tmp_path):
        model, _ = fitted
        path = tmp_path / "model.joblib"
        model.save(path)
        loaded = TrainedModel.load(path)
        X = decoding_split.validation.X
        np.testing.assert_array_equal(loaded.predict_many(X), model.predict_many(X))
        assert loaded.vocabulary_fingerprint == model.vocabulary_fingerprint


class TestEvaluation:

    def test_report_counts(self, fitted, decoding_split):
        _, report = fitted
        assert report.n_training == len(decoding_split.training)
        assert report.n_validation == len(decoding_split.validation)
        assert report.confusion_matrix.sum() == report.n_validation
        assert report.labels == ["success", "failure"]
        assert report.accuracy == pytest.approx(
            np.trace(report.confusion_matrix) / report.confusion_matrix.sum())

    def test_report_json(self, fitted, tmp_path):
        _, report = fitted
        path = tmp_path / "report.json"
        report.save_json(path)
        with open(path) as f:
            data = json.load(f)
        assert data["accuracy"] == pytest.approx(report.accuracy)
        assert len(data["confusion_matrix"]) == 2
        assert set(data["recall"]) == {"success", "failure"}
        assert set(data["metrics"]["importance_by_block"]) == {
            "contrast_left", "contrast_right", "total_spikes", "early_rate", "late_rate"}

    def test_empty_validation(self, fitted, decoding_split):
        model, _ = fitted
        empty = decoding_split.dataset.view([], "validation")
        with pytest.raises(SplitError, match="empty"):
            ModelEvaluator().evaluate(model, empty)


def test_nan_policy_trains(decoding_store, small_forest):
    split = build_dataset(decoding_store, missing_area_policy="nan")
    assert np.isnan(split.dataset.X).any()
    model, report = train_and_evaluate(split.training, split.validation, small_forest)
    assert 0.0 <= report.accuracy <= 1.0
