"""Tests for JobQueue."""

import pytest

from assistant_core.conversation.job_queue import JobQueue, JobStatus


def test_dequeue_by_priority_then_insertion_order():
    queue = JobQueue("s1")
    low = queue.add("low", priority=0)
    high = queue.add("high", priority=5)
    low_2 = queue.add("low again", priority=0)

    assert [j.id for j in queue.pending()] == [high.id, low.id, low_2.id]
    assert queue.dequeue().id == high.id
    assert queue.dequeue().id == low.id
    assert queue.get(high.id).status == JobStatus.IN_PROGRESS


def test_cancelled_jobs_are_skipped():
    queue = JobQueue("s1")
    first = queue.add("first")
    second = queue.add("second")
    queue.cancel(first.id)

    assert queue.dequeue().id == second.id
    assert queue.dequeue() is None
    assert not queue.has_pending()


def test_complete_and_fail():
    queue = JobQueue("s1")
    a = queue.add("a")
    b = queue.add("b")
    queue.complete(a.id)
    queue.fail(b.id, "max_turns_exceeded")

    assert queue.get(a.id).status == JobStatus.COMPLETED
    assert queue.get(b.id).status == JobStatus.FAILED
    assert queue.get(b.id).error == "max_turns_exceeded"


def test_unknown_job_raises():
    with pytest.raises(KeyError):
        JobQueue("s1").complete("missing")


def test_prompt_includes_description():
    queue = JobQueue("s1")
    assert queue.add("Write tests").as_prompt() == "Write tests"
    assert queue.add("Fix bug", "Crash on empty input").as_prompt() == (
        "Fix bug\n\nCrash on empty input"
    )
