from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock
from backend.core.errors import ExtractionError, SourceFetchError
from backend.core.worker.batch_worker import BatchWorker
from backend.models.job import JobStatus


def _extractor(failing_start_pages=()):
    extractor = MagicMock()

    def extract(data, start_page, end_page, total_pages):
        if start_page in failing_start_pages:
            raise ExtractionError("model unavailable")
        return f"=== PAGE {start_page} ===\nText of pages {start_page} to {end_page}", end_page - start_page + 1

    extractor.extract.side_effect = extract
    return extractor


def _source():
    source = MagicMock()
    source.fetch.return_value = b"%PDF-1.4 document bytes"
    return source


def test_three_of_four_batches_succeed(job_store, new_job, new_batch):
    job_store.create(new_job(total_batches=4))
    worker = BatchWorker(job_store, _source(), _extractor(failing_start_pages=(51,)))

    # Arrival order differs from batch order
    results = [worker.process(new_batch(i)) for i in (3, 1, 0, 2)]

    job = job_store.read("job_1")
    assert job.status == JobStatus.complete
    assert job.completed_batches == 4
    assert job.failed_batches == 1
    assert [r.success for r in results] == [True, False, True, True]

    text = job.extracted_text
    assert "BATCH 2:" not in text
    assert text.index("=== BATCH 1: PAGES 1-50 ===") < text.index("=== BATCH 3: PAGES 101-150 ===") \
        < text.index("=== BATCH 4: PAGES 151-200 ===")


def test_concurrent_batches_complete_exactly_once(job_store, new_job, new_batch):
    job_store.create(new_job(total_batches=12))
    worker = BatchWorker(job_store, _source(), _extractor())

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(worker.process, [new_batch(i, total_pages=600) for i in range(12)]))

    job = job_store.read("job_1")
    assert job.status == JobStatus.complete
    assert job.completed_batches == 12
    assert sorted(r.completed for r in results) == list(range(1, 13))


def test_redelivered_batch_is_not_double_counted(job_store, new_job, new_batch):
    job_store.create(new_job(total_batches=2))
    worker = BatchWorker(job_store, _source(), _extractor())

    worker.process(new_batch(0))
    worker.process(new_batch(0))

    job = job_store.read("job_1")
    assert job.completed_batches == 1
    assert job.status == JobStatus.processing
    assert job.extracted_text.count("=== BATCH 1:") == 1


def test_failed_redelivery_after_success_keeps_counts(job_store, new_job, new_batch):
    job_store.create(new_job(total_batches=2))
    BatchWorker(job_store, _source(), _extractor()).process(new_batch(0))
    BatchWorker(job_store, _source(), _extractor(failing_start_pages=(1,))).process(new_batch(0))

    job = job_store.read("job_1")
    assert job.completed_batches == 1
    assert job.failed_batches == 0
    assert "Text of pages 1 to 50" in job.extracted_text


def test_source_fetch_failure_counts_as_failed(job_store, new_job, new_batch):
    job_store.create(new_job(total_batches=1))
    source = MagicMock()
    source.fetch.side_effect = SourceFetchError("blob expired")

    result = BatchWorker(job_store, source, _extractor()).process(new_batch(0))

    assert not result.success
    assert "blob expired" in result.error
    job = job_store.read("job_1")
    assert job.failed_batches == 1
    assert job.status == JobStatus.complete


def test_empty_range_appends_nothing(job_store, new_job, new_batch):
    job_store.create(new_job(total_batches=1))
    extractor = MagicMock()
    extractor.extract.return_value = ("", 0)

    result = BatchWorker(job_store, _source(), extractor).process(new_batch(0))

    assert result.success
    assert not result.appended_text
    assert job_store.read("job_1").extracted_text == ""


def test_missing_job_drops_batch(job_store, new_batch):
    result = BatchWorker(job_store, _source(), _extractor()).process(new_batch(0))
    assert not result.success
    assert result.error == "Job not found"
