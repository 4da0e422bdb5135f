import json
import uuid

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from libs.core import idempotency, llm_provider, models, orchestrator
from libs.core.store import (
    DuplicateContentError,
    InvalidTransitionError,
    JobNotFoundError,
    TaskNotFoundError,
)
from services.api.app.database import Base
from services.api.app.job_store import SqlJobStore


@pytest.fixture()
def store():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield SqlJobStore(sessionmaker(bind=engine, autoflush=False, expire_on_commit=False))
    engine.dispose()


def _create(store, transcript="Plan the offsite"):
    job_id = str(uuid.uuid4())
    store.create_job(job_id, transcript, idempotency.content_hash(transcript))
    return job_id


def _complete(store, job_id):
    result = orchestrator.build_processing_result(
        [
            {"id": "a", "description": "book venue", "priority": "high", "dependencies": []},
            {"id": "b", "description": "send invites", "priority": "low", "dependencies": ["a"]},
            {"id": "c", "description": "loop", "priority": "low", "dependencies": ["c"]},
        ]
    )
    store.complete_job(job_id, result)
    return result


def test_create_and_lookup_by_content_hash(store):
    job_id = _create(store)
    assert store.find_job_by_content_hash(idempotency.content_hash("Plan the offsite")) == job_id
    assert store.find_job_by_content_hash(idempotency.content_hash("other")) is None
    job = store.get_job(job_id)
    assert job.status == models.JobStatus.processing
    assert job.result is None


def test_duplicate_content_hash_is_rejected(store):
    _create(store)
    with pytest.raises(DuplicateContentError):
        _create(store)


def test_complete_job_persists_result_and_tasks(store):
    job_id = _create(store)
    result = _complete(store, job_id)
    job = store.get_job(job_id)
    assert job.status == models.JobStatus.done
    assert job.result == result
    assert [task.id for task in store.list_tasks(job_id)] == ["a", "b", "c"]
    assert store.list_processing_jobs() == []


def test_terminal_job_cannot_transition(store):
    job_id = _create(store)
    store.fail_job(job_id, "model unavailable")
    assert store.get_job(job_id).error == "model unavailable"
    with pytest.raises(InvalidTransitionError):
        _complete(store, job_id)
    with pytest.raises(InvalidTransitionError):
        store.fail_job(job_id, "again")


def test_unknown_job(store):
    assert store.get_job("missing") is None
    with pytest.raises(JobNotFoundError):
        store.list_tasks("missing")
    with pytest.raises(JobNotFoundError):
        store.set_task_completion("missing", "a", True)


def test_list_processing_jobs(store):
    first = _create(store, "one")
    second = _create(store, "two")
    store.fail_job(second, "boom")
    assert [job.id for job in store.list_processing_jobs()] == [first]


def test_task_completion_toggle_updates_result_and_activity(store):
    job_id = _create(store)
    _complete(store, job_id)

    result = store.set_task_completion(job_id, "b", True)
    statuses = {task.id: task.status for task in result.tasks}
    assert statuses["b"] == models.TaskStatus.completed
    assert store.get_job(job_id).result == result

    result = store.set_task_completion(job_id, "b", False)
    assert {task.id: task.status for task in result.tasks}["b"] == models.TaskStatus.ready

    messages = [activity.message for activity in store.get_job(job_id).activities]
    assert messages == ["Task b marked completed", "Task b marked not completed"]


def test_task_completion_is_noop_when_unchanged(store):
    job_id = _create(store)
    _complete(store, job_id)
    store.set_task_completion(job_id, "a", True)
    store.set_task_completion(job_id, "a", True)
    assert len(store.get_job(job_id).activities) == 1


def test_error_task_cannot_be_completed(store):
    job_id = _create(store)
    _complete(store, job_id)
    with pytest.raises(InvalidTransitionError):
        store.set_task_completion(job_id, "c", True)


def test_task_completion_requires_finished_job(store):
    job_id = _create(store)
    with pytest.raises(InvalidTransitionError):
        store.set_task_completion(job_id, "a", True)


def test_task_completion_unknown_task(store):
    job_id = _create(store)
    _complete(store, job_id)
    with pytest.raises(TaskNotFoundError):
        store.set_task_completion(job_id, "zzz", True)


def test_save_tasks_only_while_processing(store):
    job_id = _create(store)
    task = models.Task(id="a", description="a", priority=models.Priority.low)
    store.save_tasks(job_id, [task])
    assert [saved.id for saved in store.list_tasks(job_id)] == ["a"]

    _complete(store, job_id)
    with pytest.raises(InvalidTransitionError):
        store.save_tasks(job_id, [task.model_copy(update={"id": "z"})])
    assert [saved.id for saved in store.list_tasks(job_id)] == ["a", "b", "c"]


def test_failed_job_has_no_task_rows(store):
    job_id = _create(store)
    store.fail_job(job_id, "model unavailable")
    assert store.list_tasks(job_id) == []


def test_second_run_of_finished_job_keeps_tasks_and_toggles(store):
    class _Provider(llm_provider.LLMProvider):
        def __init__(self, task_id):
            self.task_id = task_id
            self.calls = 0

        def generate(self, prompt):
            self.calls += 1
            return llm_provider.LLMResponse(
                content=json.dumps(
                    [
                        {
                            "id": self.task_id,
                            "description": "write notes",
                            "priority": "low",
                            "dependencies": [],
                        }
                    ]
                )
            )

    job_id = _create(store)
    orchestrator.TranscriptProcessor(_Provider("a"), store).process(job_id, "Plan the offsite")
    store.set_task_completion(job_id, "a", True)

    again = _Provider("z")
    orchestrator.TranscriptProcessor(again, store).process(job_id, "Plan the offsite")

    assert again.calls == 0
    job = store.get_job(job_id)
    assert job.status == models.JobStatus.done
    assert [(task.id, task.status) for task in job.result.tasks] == [
        ("a", models.TaskStatus.completed)
    ]
    assert [(task.id, task.status) for task in store.list_tasks(job_id)] == [
        ("a", models.TaskStatus.completed)
    ]


def test_complete_job_on_finished_job_leaves_rows_untouched(store):
    job_id = _create(store)
    _complete(store, job_id)
    store.set_task_completion(job_id, "a", True)
    replacement = orchestrator.build_processing_result(
        [{"id": "z", "description": "z", "priority": "low", "dependencies": []}]
    )
    with pytest.raises(InvalidTransitionError):
        store.complete_job(job_id, replacement)
    tasks = store.list_tasks(job_id)
    assert [task.id for task in tasks] == ["a", "b", "c"]
    assert tasks[0].status == models.TaskStatus.completed
