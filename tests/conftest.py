import sys, pytest
from pathlib import Path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path: sys.path.insert(0, str(ROOT))
from .client_utils import fake_store


@pytest.fixture
def store(tmp_path):
    "Kernelspec store listing `alpha`, `beta` and `beta2` from a temporary directory."
    return fake_store(tmp_path, ["alpha", "beta", "beta2"])
