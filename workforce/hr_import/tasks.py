import json
import logging
import os
from datetime import timedelta

from google.cloud import tasks_v2

from workforce.core.config import settings

logger = logging.getLogger("workforce.hr_import.tasks")

SECRET_HEADER = "X-Tasks-Secret"
# Cloud Tasks accepts HTTP dispatch deadlines between 15 seconds and 30 minutes.
MIN_DEADLINE_SECONDS = 15
MAX_DEADLINE_SECONDS = 1800


class TaskConfigError(Exception):
    pass


def tasks_configured() -> bool:
    try:
        _get_tasks_config()
    except TaskConfigError:
        return False
    return True


def _get_tasks_config() -> tuple[str, str, str, str]:
    project = os.getenv("GCP_PROJECT_ID")
    location = os.getenv("CLOUD_TASKS_LOCATION")
    queue = os.getenv("CLOUD_TASKS_QUEUE")
    worker_url = os.getenv("CLOUD_TASKS_WORKER_URL")
    if not (project and location and queue and worker_url):
        raise TaskConfigError("Cloud Tasks nao configurado.")
    return project, location, queue, worker_url.rstrip("/")


def enqueue_http_task(path: str, payload: dict) -> bool:
    try:
        project, location, queue, worker_url = _get_tasks_config()
    except TaskConfigError:
        return False

    client = tasks_v2.CloudTasksClient()
    parent = client.queue_path(project, location, queue)
    url = f"{worker_url}{path}"
    secret = os.getenv("HR_IMPORT_TASKS_SECRET", "")
    headers = {"Content-Type": "application/json"}
    if secret:
        headers[SECRET_HEADER] = secret

    task = {
        "http_request": {
            "http_method": tasks_v2.HttpMethod.POST,
            "url": url,
            "headers": headers,
            "body": json.dumps(payload).encode(),
        },
        "dispatch_deadline": timedelta(seconds=_dispatch_deadline_seconds()),
    }
    client.create_task(request={"parent": parent, "task": task})
    logger.info("cloud task enqueued url=%s", url)
    return True


def _dispatch_deadline_seconds() -> int:
    return max(MIN_DEADLINE_SECONDS, min(MAX_DEADLINE_SECONDS, settings.HR_IMPORT_MAX_SECONDS))
