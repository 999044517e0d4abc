import pytest

from campaigns.db.models import JobStatus, LogStatus
from campaigns.errors import CampaignError, JobNotFoundError, JobStateError
from campaigns.services.campaign_jobs import CampaignJobService


@pytest.fixture
def job_setup(session, make_event, make_participant, make_template, make_job):
    event = make_event()
    participants = [make_participant(event) for _ in range(3)]
    template = make_template(event)
    job = make_job(event, template)
    return event, participants, template, job


def test_create_job_counts_segment(job_setup):
    _, _, _, job = job_setup

    assert job.status == JobStatus.PENDING
    assert job.total_count == 3
    assert job.segmentation == {"rules": [{"type": "all"}]}
    assert job.processed_count == job.success_count == job.fail_count == 0


def test_create_job_rejects_unknown_channel(session, make_event, make_template):
    event = make_event()
    template = make_template(event)

    with pytest.raises(CampaignError) as exc:
        CampaignJobService.create_job(session, event_id=event.id, template_id=template.id, channel="fax")
    assert exc.value.code == "INVALID_CHANNEL"


def test_get_job_missing_raises(session):
    with pytest.raises(JobNotFoundError):
        CampaignJobService.get_job(session, 999)


def test_claim_is_compare_and_swap(session_factory, job_setup):
    _, _, _, job = job_setup
    first, second = session_factory(), session_factory()
    try:
        assert CampaignJobService.claim_job(first, job.id) is True
        assert CampaignJobService.claim_job(second, job.id) is False
        assert CampaignJobService.get_job(second, job.id).status == JobStatus.PROCESSING
    finally:
        first.close()
        second.close()


def test_next_pending_is_oldest_and_filters_channel(session, make_event, make_template, make_job):
    event = make_event()
    template = make_template(event)
    email_job = make_job(event, template, channel="email")
    sms_job = make_job(event, template, channel="sms")

    assert CampaignJobService.next_pending(session).id == email_job.id
    assert CampaignJobService.next_pending(session, ["sms", "chat"]).id == sms_job.id


def test_stop_only_from_processing(session, job_setup):
    _, _, _, job = job_setup

    with pytest.raises(JobStateError):
        CampaignJobService.stop_job(session, job.id)

    CampaignJobService.claim_job(session, job.id)
    stopped = CampaignJobService.stop_job(session, job.id)
    assert stopped.status == JobStatus.STOPPED


def test_mark_failed_manual(session, job_setup):
    _, _, _, job = job_setup

    failed = CampaignJobService.mark_failed_manual(session, job.id, "bad template")

    assert failed.status == JobStatus.FAILED_MANUAL
    assert failed.error_message == "bad template"
    with pytest.raises(JobStateError):
        CampaignJobService.mark_failed_manual(session, job.id)


def _finish_with_logs(session, job, outcomes):
    CampaignJobService.claim_job(session, job.id)
    for participant, ok in outcomes:
        CampaignJobService.write_log(
            session, job_id=job.id, participant_id=participant.id, address=participant.email,
            success=ok, error_message=None if ok else "bounced",
        )
    success = sum(1 for _, ok in outcomes if ok)
    CampaignJobService.finish_job(
        session, job.id, JobStatus.COMPLETED,
        processed=len(outcomes), success=success, fail=len(outcomes) - success,
    )


def test_retry_failed_only_targets_failed_recipients(session, job_setup):
    _, participants, _, job = job_setup
    p1, p2, p3 = participants
    _finish_with_logs(session, job, [(p1, True), (p2, False), (p3, False)])

    retry = CampaignJobService.retry_job(session, job.id, "failed_only")

    assert retry.id != job.id
    assert retry.source == "retry"
    assert retry.segmentation == {"rules": [{"type": "custom", "values": [str(p2.id), str(p3.id)]}]}
    assert retry.total_count == 2


def test_retry_full_reuses_segmentation(session, job_setup):
    _, participants, _, job = job_setup
    _finish_with_logs(session, job, [(p, True) for p in participants])

    retry = CampaignJobService.retry_job(session, job.id, "full")

    assert retry.segmentation == job.segmentation
    assert retry.total_count == 3


def test_retry_rejections(session, job_setup):
    _, participants, _, job = job_setup

    with pytest.raises(JobStateError):
        CampaignJobService.retry_job(session, job.id)  # still pending

    _finish_with_logs(session, job, [(p, True) for p in participants])
    with pytest.raises(JobStateError):
        CampaignJobService.retry_job(session, job.id, "failed_only")
    with pytest.raises(CampaignError):
        CampaignJobService.retry_job(session, job.id, "sideways")


def test_logs_and_summary(session, job_setup):
    _, participants, _, job = job_setup
    p1, p2, _ = participants
    _finish_with_logs(session, job, [(p1, True), (p2, False)])

    failed = CampaignJobService.get_logs(session, job.id, LogStatus.FAILED)
    assert [log.participant_id for log in failed] == [p2.id]
    assert failed[0].sent_at is None
    assert failed[0].error_message == "bounced"

    summary = CampaignJobService.summarize(CampaignJobService.get_job(session, job.id))
    assert summary["processed"] == 2
    assert summary["success_rate"] == 0.5
