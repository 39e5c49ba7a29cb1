from datetime import timedelta

from app.db_models import CallEventType, CallStatus, PaymentStatus, utcnow
from app.scheduler import ReminderDriver
from app.services import CallEventService


def reminder_call(make_call, minutes_ahead, **overrides):
    fields = dict(
        call_status=CallStatus.SCHEDULED,
        payment_status=PaymentStatus.PAID,
        scheduled_at=utcnow() + timedelta(minutes=minutes_ahead),
    )
    fields.update(overrides)
    return make_call(**fields)


def test_reminder_sent_once(db_session, make_call, fakes):
    call = reminder_call(make_call, 60)
    driver = ReminderDriver(db_session, fakes.email)

    first = driver.run()
    second = driver.run()

    assert first.success == 1
    assert second.processed == 0
    assert fakes.email.sent == [("reminder", call.id)]
    events = CallEventService.list_events(db_session, call.id)
    assert [e.event_type for e in events] == [CallEventType.REMINDER_EMAIL_SENT.value]
    assert events[0].event_data["email_id"] == "email_1"
    assert events[0].event_data["scheduled_at"] == call.scheduled_at.isoformat()


def test_calls_outside_the_window_are_ignored(db_session, make_call, fakes):
    reminder_call(make_call, 30)
    reminder_call(make_call, 90)
    reminder_call(make_call, 60, payment_status=PaymentStatus.PENDING)
    reminder_call(make_call, 60, call_status=CallStatus.QUEUED)

    report = ReminderDriver(db_session, fakes.email).run()

    assert report.processed == 0
    assert fakes.email.sent == []


def test_failed_send_is_retried_next_tick(db_session, make_call, fakes):
    call = reminder_call(make_call, 58)
    fakes.email.fail = True
    driver = ReminderDriver(db_session, fakes.email)

    report = driver.run()

    assert report.failed == 1
    assert report.results[0].error == "Resend API error: 500"
    assert CallEventService.list_events(db_session, call.id) == []

    fakes.email.fail = False
    assert driver.run().success == 1
    assert CallEventService.has_event(db_session, call.id, CallEventType.REMINDER_EMAIL_SENT)
