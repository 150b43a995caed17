import threading
import pytest
from pathlib import Path
from vcomp.domain.errors import InvalidJobTransitionError, JobNotFoundError
from vcomp.domain.models import CompressionRequest, JobStatus
from vcomp.pipeline.job_store import JobStore


@pytest.fixture
def store():
    return JobStore()


def new_job(store, name="clip.mp4"):
    job = store.create(CompressionRequest(), original_filename=name, source_path=Path(name))
    store.enqueue(job.job_id)
    return job


def set_status(status):
    def mutate(job):
        job.status = status
    return mutate


def test_create_assigns_id_and_position(store):
    first = new_job(store)
    second = new_job(store)

    assert first.job_id != second.job_id
    assert first.status == JobStatus.QUEUED
    assert (first.queue_position, second.queue_position) == (1, 2)
    assert store.queue_length() == 2


def test_plan_gets_job_id(store, planner, metadata_1080p):
    plan = planner.build_plan(CompressionRequest(target_size_mb=5, source_duration=60), metadata_1080p)
    job = store.create(plan.request, original_filename="a.mp4", source_path=Path("a.mp4"), plan=plan)

    assert job.plan.job_id == job.job_id
    assert job.encoder_name == "libx264"
    assert job.target_bitrate_kbps == pytest.approx(plan.total_bitrate_kbps)
    assert job.scale_percent == plan.scale_percent


def test_dequeue_fifo(store):
    ids = [new_job(store).job_id for _ in range(3)]
    assert [store.dequeue(timeout=0) for _ in range(3)] == ids
    assert store.dequeue(timeout=0.05) is None


def test_dequeue_skips_cancelled_and_removed(store):
    a, b, c = (new_job(store).job_id for _ in range(3))
    store.update(a, set_status(JobStatus.CANCELLED))
    store.remove(b)

    assert store.dequeue(timeout=0) == c


def test_dequeue_wakes_on_enqueue(store):
    result = []
    waiter = threading.Thread(target=lambda: result.append(store.dequeue(timeout=5)))
    waiter.start()
    job = new_job(store)
    waiter.join(timeout=5)

    assert result == [job.job_id]


def test_positions_shift_when_head_leaves(store):
    ids = [new_job(store).job_id for _ in range(4)]
    store.update(ids[0], set_status(JobStatus.PROCESSING))

    assert store.get(ids[0]).queue_position is None
    assert [store.get(i).queue_position for i in ids[1:]] == [1, 2, 3]

    store.update(ids[2], set_status(JobStatus.CANCELLED))
    assert store.get(ids[1]).queue_position == 1
    assert store.get(ids[3]).queue_position == 2


def test_positions_shift_on_remove(store):
    ids = [new_job(store).job_id for _ in range(3)]
    store.remove(ids[0])
    assert [store.get(i).queue_position for i in ids[1:]] == [1, 2]


@pytest.mark.parametrize("terminal", [JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED])
@pytest.mark.parametrize("target", list(JobStatus))
def test_terminal_states_are_final(store, terminal, target):
    job_id = new_job(store).job_id
    if terminal != JobStatus.CANCELLED:
        store.update(job_id, set_status(JobStatus.PROCESSING))
    store.update(job_id, set_status(terminal))

    if target == terminal:
        # a no-op mutation is not a transition
        assert store.update(job_id, set_status(target)).status == terminal
    else:
        with pytest.raises(InvalidJobTransitionError):
            store.update(job_id, set_status(target))
    assert store.get(job_id).status == terminal


def test_terminal_fields_are_frozen(store):
    job_id = new_job(store).job_id
    store.update(job_id, set_status(JobStatus.CANCELLED))

    def bump(job):
        job.progress = 99

    with pytest.raises(InvalidJobTransitionError):
        store.update(job_id, bump)


@pytest.mark.parametrize("target", [JobStatus.COMPLETED, JobStatus.FAILED])
def test_queued_cannot_skip_processing(store, target):
    job_id = new_job(store).job_id
    with pytest.raises(InvalidJobTransitionError):
        store.update(job_id, set_status(target))


def test_processing_cannot_go_back_to_queued(store):
    job_id = new_job(store).job_id
    store.update(job_id, set_status(JobStatus.PROCESSING))
    with pytest.raises(InvalidJobTransitionError):
        store.update(job_id, set_status(JobStatus.QUEUED))


def test_failed_mutation_leaves_job_untouched(store):
    job_id = new_job(store).job_id

    def half_done(job):
        job.progress = 50
        job.status = JobStatus.COMPLETED

    with pytest.raises(InvalidJobTransitionError):
        store.update(job_id, half_done)
    assert store.get(job_id).progress == 0


def test_progress_never_decreases(store):
    job_id = new_job(store).job_id
    store.update(job_id, set_status(JobStatus.PROCESSING))

    def progress(value):
        def mutate(job):
            job.progress = value
        return mutate

    store.update(job_id, progress(40))
    assert store.update(job_id, progress(10)).progress == 40


def test_get_returns_copies(store):
    job_id = new_job(store).job_id
    copy = store.get(job_id)
    copy.progress = 77
    assert store.get(job_id).progress == 0


def test_unknown_ids(store):
    with pytest.raises(JobNotFoundError):
        store.get("missing")
    with pytest.raises(JobNotFoundError):
        store.update("missing", set_status(JobStatus.PROCESSING))
    with pytest.raises(JobNotFoundError):
        store.remove("missing")
    with pytest.raises(KeyError):
        store.enqueue("missing")


def test_concurrent_updates_are_not_lost(store):
    job_id = new_job(store).job_id
    store.update(job_id, set_status(JobStatus.PROCESSING))

    def bump(job):
        job.progress += 1

    threads = [threading.Thread(target=lambda: [store.update(job_id, bump) for _ in range(50)]) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.get(job_id).progress == 200
