import pytest
import numpy as np
import logging

from areadecode.dataio.config import FILESYSTEM_CONFIG, FeatureConfig, ModelConfig
from areadecode.dataio.loaders import load_store

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)  # Reduce noise during tests

CONTRASTS = [0.0, 0.25, 0.5, 1.0]


def make_session_record(rng, areas, n_trials, *, neurons_per_area=3, n_bins=40,
                        success_rate=0.7, signal=1.0, session_id=None,
                        mouse_name="Cori", date="2016-12-14"):
    """
    Synthetic session record in column form.

    Success trials get extra late-window firing in every area so a
    classifier has something to learn.
    """
    neuron_areas = [area for area in areas for _ in range(neurons_per_area)]
    n_neurons = len(neuron_areas)

    feedback = rng.choice([1, -1], size=n_trials, p=[success_rate, 1 - success_rate])
    feedback[:2] = [1, -1]  # both classes always present

    spikes = []
    for code in feedback:
        trial = rng.poisson(0.2, size=(n_neurons, n_bins))
        if code == 1 and signal > 0:
            trial[:, n_bins // 2:] += rng.poisson(signal, size=(n_neurons, n_bins - n_bins // 2))
        spikes.append(trial)

    record = {
        'mouseName': mouse_name,
        'dateExperiment': date,
        'neuronArea': neuron_areas,
        'contrastLeft': list(rng.choice(CONTRASTS, size=n_trials)),
        'contrastRight': list(rng.choice(CONTRASTS, size=n_trials)),
        'feedbackType': list(feedback),
        'spikes': spikes,
    }
    if session_id is not None:
        record['sessionId'] = session_id
    return record


@pytest.fixture(autouse=True)
def restore_filesystem_config():
    """Undo set_output_directory() calls so output paths never leak between tests."""
    saved = (FILESYSTEM_CONFIG.output_dir, FILESYSTEM_CONFIG.cache_dir)
    yield
    object.__setattr__(FILESYSTEM_CONFIG, 'output_dir', saved[0])
    object.__setattr__(FILESYSTEM_CONFIG, 'cache_dir', saved[1])


@pytest.fixture
def make_record():
    """Factory fixture for synthetic session records."""
    return make_session_record


@pytest.fixture
def example_record():
    """Three neurons (CA1, CA1, root), one 4-bin trial."""
    return {
        'sessionId': 'example',
        'mouseName': 'Cori',
        'dateExperiment': '2016-12-14',
        'neuronArea': ['CA1', 'CA1', 'root'],
        'trials': [{
            'contrastLeft': 0.25,
            'contrastRight': 1,
            'feedbackType': 1,
            'spikes': [[1, 0, 1, 0],
                       [0, 1, 0, 1],
                       [1, 1, 1, 1]],
        }],
    }


@pytest.fixture
def example_session(example_record):
    return load_store([example_record])[0]


@pytest.fixture
def session_records():
    """Three small sessions recording overlapping but different area sets."""
    rng = np.random.RandomState(0)
    return [
        make_session_record(rng, ['VISp', 'CA1', 'root'], 30, session_id='s1'),
        make_session_record(rng, ['MOs', 'root'], 25, session_id='s2', mouse_name='Forssmann'),
        make_session_record(rng, ['CA1', 'DG', 'VISp', 'LGd'], 35, session_id='s3', mouse_name='Hench'),
    ]


@pytest.fixture
def store(session_records):
    return load_store(session_records)


@pytest.fixture(scope="session")
def decoding_store():
    """Larger store with ~70% success and a strong late-window signal."""
    rng = np.random.RandomState(7)
    records = [
        make_session_record(rng, ['VISp', 'CA1', 'root'], 80, session_id='d1'),
        make_session_record(rng, ['MOs', 'root', 'SCm'], 80, session_id='d2'),
        make_session_record(rng, ['CA1', 'DG', 'LGd'], 80, session_id='d3'),
    ]
    return load_store(records)


@pytest.fixture
def quiet_features():
    """Feature config without progress bars."""
    return FeatureConfig(show_progress=False)


@pytest.fixture
def small_forest():
    """A fast, deterministic forest for tests."""
    return ModelConfig(n_estimators=50, random_state=0, n_jobs=1)


# --- Helper Functions for Tests ---

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers based on test names."""
    for item in items:
        if "integration" in item.nodeid or "decoding_store" in item.fixturenames:
            item.add_marker(pytest.mark.integration)
        if "parallel" in item.name:
            item.add_marker(pytest.mark.slow)
