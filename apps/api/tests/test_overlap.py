from datetime import date

import pytest

from conftest import make_upload_in
from errors import ValidationError
from models import UploadStatus
from overlap import check_overlap

ACCOUNT = "0123456789"


@pytest.fixture()
def march(db):
    return make_upload_in(
        db, UploadStatus.COMPLETED,
        statement_start_date=date(2024, 3, 1),
        statement_end_date=date(2024, 3, 31),
        account_number_extracted=ACCOUNT,
    )


def test_partial_overlap_is_reported(db, march):
    result = check_overlap(db, "biz-test", ACCOUNT, date(2024, 3, 15), date(2024, 4, 15))

    assert result.has_overlap is True
    assert result.overlapping_count == 1
    assert result.overlapping_uploads[0].id == march.id
    assert "2024-03-01 to 2024-03-31" in result.warning_message


def test_adjacent_period_does_not_overlap(db, march):
    result = check_overlap(db, "biz-test", ACCOUNT, date(2024, 4, 1), date(2024, 4, 30))

    assert result.has_overlap is False
    assert result.overlapping_count == 0
    assert result.warning_message is None


def test_boundaries_are_inclusive(db, march):
    result = check_overlap(db, "biz-test", ACCOUNT, date(2024, 3, 31), date(2024, 4, 30))
    assert result.has_overlap is True


def test_other_account_is_ignored_when_account_given(db, march):
    result = check_overlap(db, "biz-test", "9999999999", date(2024, 3, 10), date(2024, 3, 20))
    assert result.has_overlap is False


def test_without_account_every_account_counts(db, march):
    result = check_overlap(db, "biz-test", None, date(2024, 3, 10), date(2024, 3, 20))
    assert result.has_overlap is True


def test_cancelled_and_failed_uploads_are_ignored(db):
    for status in (UploadStatus.CANCELLED, UploadStatus.FAILED):
        make_upload_in(
            db, status,
            statement_start_date=date(2024, 3, 1),
            statement_end_date=date(2024, 3, 31),
            account_number_extracted=ACCOUNT,
        )

    result = check_overlap(db, "biz-test", ACCOUNT, date(2024, 3, 1), date(2024, 3, 31))
    assert result.has_overlap is False


def test_exclude_upload_id(db, march):
    result = check_overlap(db, "biz-test", ACCOUNT, date(2024, 3, 1), date(2024, 3, 31),
                           exclude_upload_id=march.id)
    assert result.has_overlap is False


def test_other_business_is_ignored(db, march):
    result = check_overlap(db, "another-business", ACCOUNT, date(2024, 3, 1), date(2024, 3, 31))
    assert result.has_overlap is False


def test_inverted_range_is_rejected(db):
    with pytest.raises(ValidationError):
        check_overlap(db, "biz-test", ACCOUNT, date(2024, 4, 1), date(2024, 3, 1))
