from ensflow.core.bridge import poll_balance_delta, poll_bridge_status
from ensflow.core.registration import on_commit_wait_elapsed
from ensflow.observability.logging import log


def commit_wait_job(user_id: str, thread_id: str):
    """Fires once the commitment had time to mature; the flow decides whether it still matters."""
    try:
        log(event="commit_wait_job_start", userId=user_id, threadId=thread_id)
        on_commit_wait_elapsed(user_id, thread_id)
    except Exception as e:
        log(event="commit_wait_job_exception", userId=user_id, threadId=thread_id, error=str(e))
        raise


def bridge_status_job(user_id: str, thread_id: str):
    try:
        log(event="bridge_status_job_start", userId=user_id, threadId=thread_id)
        poll_bridge_status(user_id, thread_id)
    except Exception as e:
        log(event="bridge_status_job_exception", userId=user_id, threadId=thread_id, error=str(e))
        raise


def balance_delta_job(user_id: str, thread_id: str):
    try:
        log(event="balance_delta_job_start", userId=user_id, threadId=thread_id)
        poll_balance_delta(user_id, thread_id)
    except Exception as e:
        log(event="balance_delta_job_exception", userId=user_id, threadId=thread_id, error=str(e))
        raise
