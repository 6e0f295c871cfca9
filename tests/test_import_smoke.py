import importlib

import pytest


@pytest.mark.parametrize(
    "module",
    [
        "ensflow.main",
        "ensflow.queue.jobs",
        "ensflow.core.orchestrator",
        "ensflow.core.registration",
        "ensflow.core.renew",
    ],
)
def test_import_graph_smoke(module):
    """Orchestrators, jobs and the app import cleanly whatever the import order."""
    assert importlib.import_module(module) is not None


def test_uvicorn_importable():
    from ensflow.main import app

    paths = {r.path for r in app.routes}
    assert {"/commands", "/interactions/transaction", "/interactions/form", "/admin/metrics"} <= paths
