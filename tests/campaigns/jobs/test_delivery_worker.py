from unittest.mock import MagicMock, call

import pytest

from campaigns.db.models import CampaignJob, JobStatus, LogStatus, QueueJob
from campaigns.errors import JobNotFoundError, JobStateError, TemplateNotFoundError
from campaigns.jobs.delivery import DeliveryTally, DeliveryWorker, RecipientOutcome
from campaigns.jobs.tasks import ARM_FOLLOW_UPS
from campaigns.senders.base import SendResult
from campaigns.services.campaign_jobs import CampaignJobService

OK = SendResult.ok("msg-1")
FAIL = SendResult.failed("550 mailbox unavailable")


@pytest.fixture
def email_sender():
    sender = MagicMock()
    sender.send_email.return_value = OK
    return sender


@pytest.fixture
def message_sender():
    sender = MagicMock()
    sender.send_message.return_value = OK
    return sender


@pytest.fixture
def sleep():
    return MagicMock()


@pytest.fixture
def worker(session_factory, settings, email_sender, message_sender, sleep):
    return DeliveryWorker(
        session_factory=session_factory,
        settings=settings,
        email_sender=email_sender,
        message_sender=message_sender,
        sleep=sleep,
    )


@pytest.fixture
def campaign(make_event, make_participant, make_template, make_job):
    """Builds an event with ``n`` participants and a pending job over all of them."""

    def _build(n, channel="email", **template_fields):
        event = make_event()
        participants = [make_participant(event) for _ in range(n)]
        template = make_template(event, **template_fields)
        job = make_job(event, template, channel=channel)
        return event, participants, template, job

    return _build


def _reload(session, job_id):
    session.expire_all()
    return session.get(CampaignJob, job_id)


def test_tally_fold():
    tally = DeliveryTally()
    for ok in (False, False, True, False):
        tally = tally.record(RecipientOutcome(participant_id=1, success=ok))

    assert (tally.processed, tally.success, tally.fail, tally.consecutive_failures) == (4, 1, 3, 1)
    assert tally.final_status(4) == JobStatus.COMPLETED
    assert DeliveryTally(processed=2, fail=2).final_status(2) == JobStatus.FAILED
    assert DeliveryTally().final_status(0) == JobStatus.COMPLETED


def test_sends_every_recipient_and_completes(session, worker, campaign, email_sender, sleep, seat):
    event, participants, _, job = campaign(3)
    seat(event, participants[0], "Table 7")

    result = worker.run_job(job.id)

    assert result.status == JobStatus.COMPLETED
    assert (result.total, result.processed, result.success, result.fail) == (3, 3, 3, 0)
    stored = _reload(session, job.id)
    assert stored.status == JobStatus.COMPLETED
    assert (stored.processed_count, stored.success_count, stored.fail_count) == (3, 3, 0)
    assert stored.completed_at is not None

    first_call = email_sender.send_email.call_args_list[0]
    assert first_call.args[0] == participants[0].email
    assert first_call.args[1] == "Welcome to Expo 2026"
    assert "table Table 7" in first_call.args[2]
    assert "table Unassigned" in email_sender.send_email.call_args_list[1].args[2]

    # Fixed pacing between recipients, not after the last one
    assert sleep.call_args_list == [call(0.15), call(0.15)]

    logs = CampaignJobService.get_logs(session, job.id)
    assert [log.status for log in logs] == [LogStatus.SUCCESS] * 3
    assert all(log.sent_at is not None for log in logs)


def test_partial_failures_still_complete(session, worker, campaign, email_sender):
    _, participants, _, job = campaign(3)
    email_sender.send_email.side_effect = [OK, FAIL, OK]

    result = worker.run_job(job.id)

    assert result.status == JobStatus.COMPLETED
    assert (result.success, result.fail) == (2, 1)
    failed = CampaignJobService.get_logs(session, job.id, LogStatus.FAILED)
    assert [log.participant_id for log in failed] == [participants[1].id]
    assert failed[0].error_message == FAIL.error


def test_all_failures_below_threshold_fail_job(session, worker, campaign, email_sender):
    _, _, _, job = campaign(3)
    email_sender.send_email.return_value = FAIL

    result = worker.run_job(job.id)

    assert result.status == JobStatus.FAILED
    assert result.tripped is False
    assert _reload(session, job.id).fail_count == 3


def test_circuit_breaker_stops_after_twenty_consecutive_failures(session, worker, campaign, email_sender):
    _, _, _, job = campaign(30)
    email_sender.send_email.return_value = FAIL

    result = worker.run_job(job.id)

    assert result.status == JobStatus.FAILED
    assert result.tripped is True
    assert email_sender.send_email.call_count == 20
    stored = _reload(session, job.id)
    assert (stored.total_count, stored.processed_count, stored.fail_count) == (30, 20, 20)
    assert "Circuit breaker" in stored.error_message
    assert len(CampaignJobService.get_logs(session, job.id)) == 20


def test_success_resets_consecutive_failures(session, worker, campaign, email_sender):
    _, _, _, job = campaign(40)
    email_sender.send_email.side_effect = ([FAIL] * 19 + [OK]) * 2

    result = worker.run_job(job.id)

    assert result.tripped is False
    assert result.status == JobStatus.COMPLETED
    assert (result.processed, result.success, result.fail) == (40, 2, 38)


def test_counters_consistent_at_every_observation(session_factory, worker, campaign, email_sender):
    _, _, _, job = campaign(25)
    snapshots = []

    def observe_then_send(to, subject, html, text=None):
        reader = session_factory()
        try:
            row = reader.get(CampaignJob, job.id)
            snapshots.append((row.total_count, row.processed_count, row.success_count, row.fail_count))
        finally:
            reader.close()
        return FAIL if len(snapshots) == 5 else OK

    email_sender.send_email.side_effect = observe_then_send

    worker.run_job(job.id)

    assert len(snapshots) == 25
    for total, processed, success, fail in snapshots:
        assert processed == success + fail
        assert processed <= total
    # Checkpoints: after the failure (5), then every tenth recipient
    assert snapshots[4][1] == 0
    assert snapshots[5][1] == 5
    assert snapshots[9][1] == 5
    assert snapshots[10][1] == 10
    assert snapshots[20][1] == 20


def test_recipient_exception_is_counted_not_fatal(session, worker, campaign, email_sender):
    _, _, _, job = campaign(3)
    email_sender.send_email.side_effect = [OK, RuntimeError("socket closed"), OK]

    result = worker.run_job(job.id)

    assert result.status == JobStatus.COMPLETED
    assert (result.success, result.fail) == (2, 1)
    failed = CampaignJobService.get_logs(session, job.id, LogStatus.FAILED)
    assert failed[0].error_message == "socket closed"


def test_recipients_without_address_are_excluded(session, worker, make_event, make_participant, make_template, make_job,
                                                 email_sender):
    event = make_event()
    make_participant(event)
    make_participant(event, email=None)
    make_participant(event, email="   ")
    job = make_job(event, make_template(event))
    assert job.total_count == 3

    result = worker.run_job(job.id)

    assert result.total == 1
    assert email_sender.send_email.call_count == 1
    assert _reload(session, job.id).total_count == 1


def test_empty_segment_completes_with_zero_counts(session, worker, make_event, make_template, make_job, email_sender):
    event = make_event()
    job = make_job(event, make_template(event))

    result = worker.run_job(job.id)

    assert result.status == JobStatus.COMPLETED
    assert (result.total, result.processed) == (0, 0)
    email_sender.send_email.assert_not_called()


def test_missing_template_fails_job_before_sending(session, worker, make_event, make_participant, email_sender):
    event = make_event()
    make_participant(event)
    job = CampaignJobService.create_job(session, event_id=event.id, template_id=404)

    with pytest.raises(TemplateNotFoundError):
        worker.run_job(job.id)

    stored = _reload(session, job.id)
    assert stored.status == JobStatus.FAILED
    assert "Template 404 not found" in stored.error_message
    email_sender.send_email.assert_not_called()


def test_process_next_reports_validation_failure(session, worker, make_event, make_participant):
    event = make_event()
    make_participant(event)
    job = CampaignJobService.create_job(session, event_id=event.id, template_id=404)

    result = worker.process_next()

    assert result.status == JobStatus.FAILED
    assert result.job_id == job.id
    assert "Template" in result.error


def test_run_job_requires_pending(session, worker, campaign):
    _, _, _, job = campaign(1)
    worker.run_job(job.id)

    with pytest.raises(JobStateError):
        worker.run_job(job.id)
    with pytest.raises(JobNotFoundError):
        worker.run_job(9999)


def test_process_next_idle_and_channel_filter(worker, campaign, email_sender, message_sender):
    assert worker.process_next().status == "idle"

    _, _, _, job = campaign(2, channel="sms", body_text="Hi {{name}}")

    assert worker.process_next(["email"]).status == "idle"
    result = worker.process_next(["sms", "chat"])

    assert result.job_id == job.id
    assert result.status == JobStatus.COMPLETED
    assert message_sender.send_message.call_count == 2
    channel, address, body = message_sender.send_message.call_args_list[0].args
    assert channel == "sms"
    assert address.startswith("010")
    assert body.startswith("Hi Guest")
    email_sender.send_email.assert_not_called()


def test_message_channel_paces_at_half_second(worker, campaign, sleep):
    _, _, _, job = campaign(3, channel="chat")

    worker.run_job(job.id)

    assert sleep.call_args_list == [call(0.5), call(0.5)]


def test_finished_job_queues_follow_up_arming(session, worker, campaign):
    _, _, _, job = campaign(1)

    worker.run_job(job.id)

    queued = session.query(QueueJob).filter_by(type=ARM_FOLLOW_UPS).all()
    assert len(queued) == 1
    assert queued[0].payload == {"job_id": job.id}
    assert queued[0].idempotency_key == f"follow-ups:{job.id}"
