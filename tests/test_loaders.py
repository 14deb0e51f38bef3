import pytest
import numpy as np
import joblib

from areadecode.dataio import config
from areadecode.dataio.loaders import (
    LoadingError, RecordValidator, SessionLoader, SessionRecordParser,
    load_store, load_store_from_file,
)
from areadecode.dataio.data_structures import SchemaError, SessionStore


def _column_form(example_record):
    trial = example_record['trials'][0]
    record = {k: v for k, v in example_record.items() if k != 'trials'}
    for name in RecordValidator.TRIAL_FIELDS:
        record[name] = [trial[name]]
    return record


def test_trial_list_and_column_forms_agree(example_record):
    parser = SessionRecordParser()
    a = parser.parse_record(example_record, 0)
    b = parser.parse_record(_column_form(example_record), 0)
    assert a.neuron_areas == b.neuron_areas == ("CA1", "CA1", "root")
    assert len(a.trials) == len(b.trials) == 1
    np.testing.assert_array_equal(a.trials[0].spikes, b.trials[0].spikes)
    assert a.trials[0].feedback == b.trials[0].feedback == "success"
    assert a.trials[0].session_id == "example"


def test_default_session_id_uses_record_position(example_record):
    del example_record['sessionId']
    session = SessionRecordParser().parse_record(example_record, 4)
    assert session.session_id == "session5"


def test_missing_required_field(example_record):
    del example_record['neuronArea']
    with pytest.raises(LoadingError, match="neuronArea"):
        RecordValidator.validate_record_structure(example_record, 0)


def test_missing_trial_field(example_record):
    del example_record['trials'][0]['feedbackType']
    with pytest.raises(LoadingError, match="feedbackType"):
        load_store([example_record])


def test_inconsistent_column_lengths(example_record):
    record = _column_form(example_record)
    record['feedbackType'] = [1, -1]
    with pytest.raises(LoadingError, match="Inconsistent"):
        load_store([record])


def test_spike_rows_must_match_neuron_areas(example_record):
    example_record['neuronArea'] = ['CA1', 'root']
    with pytest.raises(SchemaError) as excinfo:
        load_store([example_record])
    assert excinfo.value.session_id == "example"


def test_load_store_preserves_record_order(session_records):
    store = load_store(session_records)
    assert isinstance(store, SessionStore)
    assert [s.session_id for s in store] == ["s1", "s2", "s3"]


def test_load_store_from_file_and_cache(session_records, tmp_path):
    bundle = tmp_path / "sessions.pkl"
    joblib.dump(session_records, bundle)
    config.set_output_directory(tmp_path / "outputs")

    store = load_store_from_file(bundle, use_cache=True)
    assert len(store) == 3
    cache_file = SessionLoader.cache_path_for(bundle)
    assert cache_file.parent == tmp_path / "cache"
    assert cache_file.name.startswith("sessions_")
    assert cache_file.exists()

    cached = SessionLoader().load_store_from_file(bundle, use_cache=True)
    assert [s.session_id for s in cached] == [s.session_id for s in store]


def test_same_named_bundles_do_not_share_a_cache(session_records, tmp_path):
    config.set_output_directory(tmp_path / "outputs")
    (tmp_path / "a").mkdir()
    (tmp_path / "b").mkdir()
    bundle_a = tmp_path / "a" / "sessions.pkl"
    bundle_b = tmp_path / "b" / "sessions.pkl"
    joblib.dump(session_records, bundle_a)
    joblib.dump(session_records[1:2], bundle_b)

    store_a = load_store_from_file(bundle_a, use_cache=True)
    store_b = load_store_from_file(bundle_b, use_cache=True)
    assert len(store_a) == 3
    assert len(store_b) == 1
    assert store_b[0].session_id == "s2"
    assert SessionLoader.cache_path_for(bundle_a) != SessionLoader.cache_path_for(bundle_b)


def test_rewritten_bundle_invalidates_cache(session_records, tmp_path):
    config.set_output_directory(tmp_path / "outputs")
    bundle = tmp_path / "sessions.pkl"
    joblib.dump(session_records, bundle)
    assert len(load_store_from_file(bundle, use_cache=True)) == 3

    joblib.dump(session_records[:2], bundle)
    assert len(load_store_from_file(bundle, use_cache=True)) == 2


def test_ragged_spike_matrix_is_schema_error(example_record):
    example_record['trials'][0]['spikes'] = [[1, 0, 1, 0], [0, 1], [1, 1, 1, 1]]
    with pytest.raises(SchemaError, match="rectangular") as excinfo:
        load_store([example_record])
    assert excinfo.value.session_id == "example"
    assert excinfo.value.trial_idx == 0


def test_fractional_spike_counts_rejected(example_record):
    example_record['trials'][0]['spikes'][0] = [0.5, 0, 1, 0]
    with pytest.raises(SchemaError, match="non-integer") as excinfo:
        load_store([example_record])
    assert excinfo.value.session_id == "example"


def test_load_store_from_missing_file(tmp_path):
    with pytest.raises(LoadingError, match="not found"):
        load_store_from_file(tmp_path / "nope.pkl")


def test_bundle_must_hold_a_list(tmp_path):
    bundle = tmp_path / "bad.pkl"
    joblib.dump({'mouseName': 'Cori'}, bundle)
    with pytest.raises(LoadingError, match="list of session records"):
        load_store_from_file(bundle, use_cache=False)
