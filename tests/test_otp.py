# tests/test_otp.py
from account_service.models import OTPCode, OTPPurpose
from account_service.otp import (
    EXPIRED_OTP,
    INVALID_OTP,
    OTP_VERIFIED,
    TOO_MANY_ATTEMPTS,
    generate_otp,
)

EMAIL = "ada@example.com"


def _wrong(code):
    return "000000" if code != "000000" else "111111"


def test_generated_codes_are_six_digits_in_range():
    for _ in range(200):
        code = generate_otp()
        assert len(code) == 6
        assert code.isdigit()
        assert 100000 <= int(code) <= 999999


def test_issue_stores_expiry_from_clock(otp, db, clock):
    otp.issue(EMAIL)
    record = db.query(OTPCode).one()
    assert record.created_at == clock.now
    assert (record.expires_at - record.created_at).total_seconds() == 600
    assert record.attempts == 0
    assert record.is_used is False


def test_issue_replaces_previous_unused_code(otp, db):
    first = otp.issue(EMAIL)
    second = otp.issue(EMAIL)
    records = db.query(OTPCode).all()
    assert len(records) == 1
    assert records[0].code == second
    if first != second:
        assert otp.verify(EMAIL, first).message == INVALID_OTP


def test_codes_are_scoped_by_purpose(otp, db):
    otp.issue(EMAIL, OTPPurpose.PASSWORD_RESET)
    otp.issue(EMAIL, OTPPurpose.EMAIL_VERIFICATION)
    assert db.query(OTPCode).count() == 2


def test_verify_correct_code(otp):
    code = otp.issue(EMAIL)
    check = otp.verify(EMAIL, code)
    assert check.valid
    assert check.message == OTP_VERIFIED


def test_verify_matches_email_case_insensitively(otp):
    code = otp.issue(EMAIL)
    assert otp.verify("ADA@example.com", code).valid


def test_verify_unknown_email_is_invalid(otp):
    check = otp.verify("nobody@example.com", "123456")
    assert not check.valid
    assert check.message == INVALID_OTP


def test_every_check_costs_an_attempt(otp, db):
    code = otp.issue(EMAIL)
    for _ in range(5):
        assert otp.verify(EMAIL, _wrong(code)).message == INVALID_OTP

    # budget spent: even the right code is refused and the record is gone
    check = otp.verify(EMAIL, code)
    assert not check.valid
    assert check.message == TOO_MANY_ATTEMPTS
    assert db.query(OTPCode).count() == 0


def test_successful_checks_count_too(otp):
    code = otp.issue(EMAIL)
    for _ in range(5):
        assert otp.verify(EMAIL, code).valid
    assert otp.verify(EMAIL, code).message == TOO_MANY_ATTEMPTS


def test_expired_code_is_rejected_and_removed(otp, db, clock):
    code = otp.issue(EMAIL)
    clock.advance(minutes=10)
    check = otp.verify(EMAIL, code)
    assert not check.valid
    assert check.message == EXPIRED_OTP
    assert db.query(OTPCode).count() == 0


def test_code_is_live_just_before_expiry(otp, clock):
    code = otp.issue(EMAIL)
    clock.advance(minutes=9, seconds=59)
    assert otp.verify(EMAIL, code).valid


def test_used_code_cannot_be_verified_again(otp):
    code = otp.issue(EMAIL)
    assert otp.verify(EMAIL, code).valid
    otp.mark_used(EMAIL, code)
    check = otp.verify(EMAIL, code)
    assert not check.valid
    assert check.message == INVALID_OTP


def test_cleanup_removes_only_expired_codes(otp, db, clock):
    otp.issue("old@example.com")
    clock.advance(minutes=11)
    otp.issue(EMAIL)

    assert otp.cleanup_expired() == 1
    assert [r.email for r in db.query(OTPCode).all()] == [EMAIL]
    assert otp.cleanup_expired() == 0
