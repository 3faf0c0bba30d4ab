import logging
import threading

from authcore.services.audit_service import (
    AuditService,
    AuthAction,
    AuthEvent,
    AuthResult,
    log_event,
)


def _event(action=AuthAction.LOGIN_SUCCESS, result=AuthResult.SUCCESS, **kwargs):
    return AuthEvent(action=action, result=result, **kwargs)


def test_emit_only_enqueues():
    delivered = []
    service = AuditService(sink=delivered.append)

    service.emit(_event())
    assert delivered == []
    assert service.pending() == 1

    assert service.drain() == 1
    assert [e.action for e in delivered] == [AuthAction.LOGIN_SUCCESS]
    assert service.pending() == 0


def test_full_queue_drops_instead_of_blocking():
    service = AuditService(sink=lambda event: None, max_queue_size=2)
    for _ in range(5):
        service.emit(_event())

    assert service.pending() == 2
    assert service.dropped == 3


def test_sink_failure_does_not_stop_delivery():
    delivered = []

    def flaky(event):
        if event.action is AuthAction.LOGOUT:
            raise RuntimeError("sink down")
        delivered.append(event)

    service = AuditService(sink=flaky)
    service.emit(_event(AuthAction.LOGOUT))
    service.emit(_event(AuthAction.LOGIN_FAILURE, AuthResult.FAILURE))

    assert service.drain() == 2
    assert [e.action for e in delivered] == [AuthAction.LOGIN_FAILURE]


def test_background_writer_delivers_events():
    seen = threading.Event()
    delivered = []

    def sink(event):
        delivered.append(event)
        seen.set()

    service = AuditService(sink=sink)
    service.start()
    try:
        service.emit(_event(AuthAction.LOGOUT_ALL_DEVICES, principal_id=4))
        assert seen.wait(timeout=5)
    finally:
        service.stop(timeout=2)

    assert not service.is_running()
    assert delivered[0].principal_id == 4


def test_stop_flushes_pending_events():
    delivered = []
    service = AuditService(sink=delivered.append)
    service.emit(_event())
    service.emit(_event())

    service.stop()
    assert len(delivered) == 2


def test_log_event_format(caplog):
    event = _event(
        AuthAction.LOGIN_FAILURE,
        AuthResult.FAILURE,
        principal_id=9,
        identifier="admin",
        reason="bad password",
        ip_address="10.0.0.1",
    )
    with caplog.at_level(logging.INFO, logger="authcore.audit"):
        log_event(event)

    record = caplog.records[-1]
    assert record.levelno == logging.INFO
    assert record.getMessage().startswith("AUDIT_LOG | action=LOGIN_FAILURE | result=FAILURE")
    assert "principal_id=9" in record.getMessage()
    assert "ip=10.0.0.1" in record.getMessage()


def test_account_locked_logs_as_warning(caplog):
    with caplog.at_level(logging.INFO, logger="authcore.audit"):
        log_event(_event(AuthAction.ACCOUNT_LOCKED))
    assert caplog.records[-1].levelno == logging.WARNING
    assert "ip=UNKNOWN" in caplog.records[-1].getMessage()
