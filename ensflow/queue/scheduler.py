from datetime import timedelta

from ensflow.observability.logging import log
from ensflow.queue.rq_conn import get_queue

# Jobs are referenced by dotted path so the orchestrators never import the
# job module (which imports them back).
COMMIT_WAIT_JOB = "ensflow.queue.jobs.commit_wait_job"
BRIDGE_STATUS_JOB = "ensflow.queue.jobs.bridge_status_job"
BALANCE_DELTA_JOB = "ensflow.queue.jobs.balance_delta_job"


def schedule(delay_sec: float, job: str, *args) -> str:
    """Run `job(*args)` on an RQ worker after delay_sec. Needs `rq worker --with-scheduler`."""
    q = get_queue()
    rq_job = q.enqueue_in(timedelta(seconds=max(0.0, float(delay_sec))), job, *args)
    log(event="job_scheduled", job=job.rsplit(".", 1)[-1], delaySec=float(delay_sec), jobId=rq_job.id)
    return rq_job.id
