from server.jobs import JobManager, JobStatus


async def test_job_runs_to_completion():
    manager = JobManager()

    async def handler(job):
        job.progress = {"done": 1, "total": 1}
        return {"added": 1}

    job = manager.create_job("index", {"sitemap": "https://example.edu/sitemap.xml"}, handler=handler)
    assert job.status == JobStatus.QUEUED

    await manager.run_job(job.id)

    assert job.status == JobStatus.DONE
    assert job.result == {"added": 1}
    assert job.started_at is not None and job.completed_at is not None
    data = job.to_dict()
    assert data["status"] == "done"
    assert data["parameters"]["sitemap"] == "https://example.edu/sitemap.xml"
    assert isinstance(data["created_at"], str)


async def test_failing_job_records_error():
    manager = JobManager()

    async def handler(job):
        raise RuntimeError("sitemap unreachable")

    job = manager.create_job("index", handler=handler)
    await manager.run_job(job.id)

    assert job.status == JobStatus.FAILED
    assert job.error == "sitemap unreachable"
    assert any("failed" in line for line in job.logs)


async def test_unknown_job_is_ignored():
    manager = JobManager()
    await manager.run_job("missing")
    assert manager.get_job("missing") is None


async def test_finished_jobs_are_evicted_beyond_cap():
    manager = JobManager(max_jobs=2)

    async def handler(job):
        return {}

    first = manager.create_job("index", handler=handler)
    await manager.run_job(first.id)
    manager.create_job("index", handler=handler)
    manager.create_job("index", handler=handler)

    assert manager.get_job(first.id) is None
    assert len(manager.list_jobs()) == 2
    assert len(manager.list_jobs(status=JobStatus.QUEUED)) == 2
