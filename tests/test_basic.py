"""Basic tests to verify setup."""

import collab_orchestrator


def test_version():
    """Test that version is defined."""
    assert hasattr(collab_orchestrator, "__version__")
    assert collab_orchestrator.__version__ == "0.1.0"


def test_import():
    """Test that package can be imported."""
    assert collab_orchestrator is not None
    assert "OrchestratorRuntime" in collab_orchestrator.__all__
