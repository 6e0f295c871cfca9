#!/usr/bin/env python3
import sys
import os

print("Running preflight import check...")
try:
    os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

    import ensflow.main
    print("Import ensflow.main: OK")

    # RQ resolves jobs by dotted path at run time; make sure the path imports
    import ensflow.queue.jobs
    print("Import ensflow.queue.jobs: OK")

    from ensflow.settings import settings
    missing = [k for k in ("TRANSPORT_URL", "REGISTRY_API_URL", "FLOW_INTEGRITY_SECRET") if not getattr(settings, k, "")]
    if missing:
        print(f"Preflight warning: unset settings {missing}")

    print("Preflight check passed.")
    sys.exit(0)
except Exception as e:
    print(f"Preflight check FAILED: {e}")
    import traceback
    traceback.print_exc()
    sys.exit(1)
