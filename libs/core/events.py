JOB_QUEUE_STREAM = "jobs.queue"
JOB_STREAM = "jobs.events"
TASK_STREAM = "tasks.events"

JOB_CREATED = "job.created"
JOB_COMPLETED = "job.completed"
JOB_FAILED = "job.failed"
TASK_UPDATED = "task.updated"

JOB_EVENTS = [JOB_CREATED, JOB_COMPLETED, JOB_FAILED]
TASK_EVENTS = [TASK_UPDATED]


def stream_for_event(event_type: str) -> str:
    if event_type.startswith("task"):
        return TASK_STREAM
    return JOB_STREAM
