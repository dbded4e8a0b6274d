import datetime

import pytest

from passgate.core.errors import (
    AccountDisabledError,
    ApplicationNotApprovedError,
    ApplicationNotFoundError,
    PasscodeNotFoundError,
    StoreUnavailableError,
    UserNotFoundError,
)
from passgate.services.passcodes import IssueOptions, PasscodeService
from passgate.services.validation import DeviceContext

from conftest import add_application, add_permissions, add_user, utcnow


def test_issue_uses_type_defaults(control, session_factory):
    add_user(session_factory, 1)
    now = utcnow()
    passcode = control.passcodes.issue(1, "employee", now=now)
    assert passcode.status == "active"
    assert passcode.code.startswith("emp_")
    assert passcode.usage_limit == 50
    assert passcode.valid_until - passcode.valid_from == datetime.timedelta(minutes=480)

    add_user(session_factory, 2, user_type="visitor")
    visitor = control.passcodes.issue(2, "visitor", now=now)
    assert visitor.usage_limit == 5
    assert visitor.valid_until - visitor.valid_from == datetime.timedelta(minutes=120)


def test_issue_options_override_defaults(control, session_factory):
    add_user(session_factory, 1)
    passcode = control.issue(
        1,
        "employee",
        IssueOptions(usage_limit=3, valid_for=datetime.timedelta(minutes=15), permissions=("floor_3",)),
    )
    assert passcode.usage_limit == 3
    assert passcode.valid_until - passcode.valid_from == datetime.timedelta(minutes=15)
    assert passcode.permissions == ("basic_access", "floor_3")


def test_issue_rejects_bad_input(control, session_factory):
    add_user(session_factory, 1)
    add_user(session_factory, 2, status="inactive")
    with pytest.raises(ValueError):
        control.issue(1, "contractor")
    with pytest.raises(ValueError):
        control.issue(1, "employee", IssueOptions(usage_limit=0))
    with pytest.raises(UserNotFoundError):
        control.issue(404, "employee")
    with pytest.raises(AccountDisabledError):
        control.issue(2, "employee")


def test_merchant_permissions_are_granted(control, session_factory):
    add_user(session_factory, 1, user_type="merchant_admin", merchant_id=10)
    add_permissions(session_factory, 10, "door_a", "door_b", "door_a")
    passcode = control.issue(1, "employee")
    assert passcode.permissions == ("door_a", "door_b")


def test_refresh_revokes_previous_passcode(control, session_factory):
    add_user(session_factory, 1)
    first = control.issue(1, "employee")
    second = control.refresh(1)

    assert second.code != first.code
    assert second.type == "employee"
    assert control.passcodes.get(first.id).status == "revoked"
    assert control.passcodes.current(1).id == second.id
    assert control.passcodes.statistics(user_id=1) == {"active": 1, "expired": 0, "revoked": 1, "total": 2}


def test_refresh_picks_visitor_type_for_visitors(control, session_factory):
    add_user(session_factory, 3, user_type="visitor")
    assert control.refresh(3).type == "visitor"


def test_issue_from_approved_application(control, session_factory):
    add_user(session_factory, 5, user_type="visitor")
    now = utcnow()
    add_application(session_factory, 77, 5, scheduled_time=now, duration_hours=3, usage_limit=2)

    passcode = control.passcodes.issue_for_application(77, now=now)
    assert passcode.type == "visitor"
    assert passcode.application_id == 77
    assert passcode.usage_limit == 2
    assert passcode.valid_until - now == datetime.timedelta(hours=3)


def test_application_validity_has_a_floor(control, session_factory):
    add_user(session_factory, 5, user_type="visitor")
    now = utcnow()
    add_application(session_factory, 78, 5, scheduled_time=now - datetime.timedelta(hours=1), duration_hours=1)

    passcode = control.passcodes.issue_for_application(78, now=now)
    assert passcode.valid_until - now == datetime.timedelta(minutes=30)
    assert passcode.usage_limit == 5


def test_application_must_exist_and_be_approved(control, session_factory):
    add_user(session_factory, 5, user_type="visitor")
    add_application(session_factory, 79, 5, status="pending")
    with pytest.raises(ApplicationNotFoundError):
        control.passcodes.issue_for_application(1234)
    with pytest.raises(ApplicationNotApprovedError):
        control.issue(5, "visitor", IssueOptions(application_id=79))


def test_info_and_credentials(control, session_factory, codes):
    add_user(session_factory, 1, name="Alice")
    passcode = control.issue(1, "employee")

    info = control.info(passcode.code)
    assert info.passcode.id == passcode.id
    assert info.user.name == "Alice"
    with pytest.raises(PasscodeNotFoundError):
        control.info("emp_missing")

    now = utcnow()
    bundle = control.passcodes.credentials(passcode.id, now=now)
    assert codes.decode_qr(bundle.qr_payload).code == passcode.code
    assert codes.validate_rolling(bundle.rolling_code, passcode.code, now)
    assert bundle.rolling_valid_until > now

    ctx = DeviceContext(device_id="GATE_1", now=now)
    assert control.validate_qr(bundle.qr_payload, ctx).valid is True
    assert control.validate_rolling(bundle.rolling_code, passcode.code, ctx).valid is True
    assert control.passcodes.get(passcode.id).usage_count == 2


def test_revoke_is_idempotent(control, session_factory):
    add_user(session_factory, 1)
    passcode = control.issue(1, "employee")
    assert control.passcodes.revoke(passcode.id).status == "revoked"
    assert control.passcodes.revoke(passcode.id).status == "revoked"
    with pytest.raises(PasscodeNotFoundError):
        control.passcodes.revoke(999)


def test_batch_issue_skips_failures(control, session_factory):
    add_user(session_factory, 1)
    add_user(session_factory, 2, status="inactive")
    add_user(session_factory, 3)
    issued = control.passcodes.batch_issue([1, 2, 3, 404], "employee")
    assert [p.user_id for p in issued] == [1, 3]


def test_expire_overdue(control, session_factory):
    add_user(session_factory, 1)
    passcode = control.issue(1, "employee", IssueOptions(valid_for=datetime.timedelta(minutes=1)))
    assert control.passcodes.expire_overdue(now=utcnow() + datetime.timedelta(minutes=5)) == 1
    assert control.passcodes.get(passcode.id).status == "expired"
    assert control.passcodes.expire_overdue(now=utcnow() + datetime.timedelta(minutes=5)) == 0


def test_code_collisions_are_retried(fake_store, fake_users, codes, monkeypatch):
    service = PasscodeService(fake_store, fake_users, codes)
    taken = service.issue(1, "employee")
    drawn = iter([taken.code, taken.code, "emp_fresh"])
    monkeypatch.setattr(codes, "new_static_code", lambda owner_id, passcode_type: next(drawn))

    fresh = service.issue(3, "visitor")
    assert fresh.code == "emp_fresh"
    assert fake_store.find_by_id(taken.id).status == "active"


def test_failed_insert_keeps_previous_passcode(fake_store, fake_users, codes, monkeypatch):
    service = PasscodeService(fake_store, fake_users, codes)
    first = service.issue(1, "employee")

    def _store_down(record):
        raise StoreUnavailableError("passcode store unavailable (create)")

    monkeypatch.setattr(fake_store, "create", _store_down)
    with pytest.raises(StoreUnavailableError):
        service.refresh(1)
    assert fake_store.find_by_id(first.id).status == "active"
    assert service.current(1).id == first.id


def test_exhausted_collisions_keep_previous_passcode(fake_store, fake_users, codes, monkeypatch):
    service = PasscodeService(fake_store, fake_users, codes)
    first = service.issue(1, "employee")
    monkeypatch.setattr(codes, "new_static_code", lambda owner_id, passcode_type: first.code)

    with pytest.raises(StoreUnavailableError):
        service.issue(1, "employee")
    assert service.current(1).id == first.id


def test_application_id_needs_an_application_store(fake_store, fake_users, codes):
    service = PasscodeService(fake_store, fake_users, codes)
    with pytest.raises(ApplicationNotFoundError):
        service.issue(3, "visitor", IssueOptions(application_id=77))
    assert service.current(3) is None


def test_explicit_zero_usage_limit_is_rejected_for_applications(control, session_factory):
    add_user(session_factory, 5, user_type="visitor")
    add_application(session_factory, 80, 5, usage_limit=4)
    with pytest.raises(ValueError):
        control.issue(5, "visitor", IssueOptions(application_id=80, usage_limit=0))
    assert control.passcodes.current(5) is None
