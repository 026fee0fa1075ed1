import pytest

from healthmate import reports
from healthmate.exceptions import NotFoundError, ValidationError
from healthmate.schemas import AiSummary, ReportUpdate, format_file_size


def make_report(db, user, **overrides):
    fields = dict(
        user_id=user.id,
        file_name="1718000000000_abc.png",
        original_name="scan.png",
        file_url="https://files.test/scan.png",
        file_type="image/png",
        file_size=1536,
        storage_public_id="healthmate/reports/1718000000000_abc.png",
    )
    fields.update(overrides)
    return reports.create_report(db, **fields)


def test_parse_tags():
    assert reports.parse_tags(None) == []
    assert reports.parse_tags(" blood, ,sugar,blood ") == ["blood", "sugar"]


def test_format_file_size():
    assert format_file_size(0) == "0 Bytes"
    assert format_file_size(512) == "512 Bytes"
    assert format_file_size(1536) == "1.5 KB"
    assert format_file_size(10 * 1024 * 1024) == "10 MB"


def test_pagination_meta():
    assert reports.pagination_meta(2, 10, 25) == {
        "current_page": 2,
        "total_pages": 3,
        "total_reports": 25,
        "has_next": True,
        "has_prev": True,
    }
    assert reports.pagination_meta(1, 10, 0)["total_pages"] == 0


def test_create_report_starts_pending(db, user):
    report = make_report(db, user, tags=["x", "x", " y "])

    assert report.analysis_status == "pending"
    assert report.tags == ["x", "y"]
    assert report.ai_summary["english"] == ""
    assert report.ai_summary["key_findings"] == []


def test_create_report_rejects_unknown_type(db, user):
    with pytest.raises(ValidationError):
        make_report(db, user, file_type="application/zip")


def test_get_report_checks_owner(db, user):
    report = make_report(db, user)

    with pytest.raises(NotFoundError):
        reports.get_report(db, report.id, user.id + 1)


def test_transitions_keep_summary_and_error_consistent(db, user):
    report = make_report(db, user)
    summary = AiSummary(english="Fine", key_findings=["ok"])

    assert not reports.mark_completed(db, report.id, summary)
    assert reports.mark_processing(db, report.id)
    assert not reports.mark_processing(db, report.id)
    assert reports.mark_completed(db, report.id, summary)
    db.refresh(report)
    assert report.analysis_status == "completed"
    assert report.ai_summary["key_findings"] == ["ok"]

    assert not reports.mark_failed(db, report.id, "late failure")
    assert reports.reset_for_retry(db, report.id)
    db.refresh(report)
    assert report.analysis_status == "pending"
    assert report.ai_summary_json is None

    assert reports.mark_failed(db, report.id, "")
    db.refresh(report)
    assert report.analysis_error == "Analysis failed"


def test_update_only_touches_provided_fields(db, user):
    report = make_report(db, user, notes="original", tags=["keep"])

    updated = reports.update_report_metadata(db, report.id, user.id, ReportUpdate(is_important=True))

    assert updated.is_important
    assert updated.notes == "original"
    assert updated.tags == ["keep"]


def test_list_reports_search_matches_notes(db, user):
    make_report(db, user, notes="Fasting sample")
    make_report(db, user, original_name="other.png")

    found, total = reports.list_reports(db, user.id, search="fasting")

    assert total == 1
    assert found[0].notes == "Fasting sample"


def test_list_reports_search_matches_non_ascii_tags(db, user):
    make_report(db, user, tags=["دل", "Herzklappe-Prüfung"])
    make_report(db, user, original_name="other.png", tags=["blood"])

    urdu, urdu_total = reports.list_reports(db, user.id, search="دل")
    german, german_total = reports.list_reports(db, user.id, search="Prüfung")

    assert urdu_total == 1
    assert german_total == 1
    assert urdu[0].tags == ["دل", "Herzklappe-Prüfung"]
    assert german[0].id == urdu[0].id


def test_list_reports_search_treats_wildcards_literally(db, user):
    make_report(db, user, original_name="scan.png", notes="Fasting sample")
    make_report(db, user, original_name="lipid_profile.png", notes="100% normal")

    _, percent_total = reports.list_reports(db, user.id, search="%")
    found, underscore_total = reports.list_reports(db, user.id, search="_")
    _, literal_total = reports.list_reports(db, user.id, search="100%")

    assert percent_total == 1
    assert underscore_total == 1
    assert found[0].original_name == "lipid_profile.png"
    assert literal_total == 1


def test_list_reports_search_with_no_match(db, user):
    make_report(db, user)

    found, total = reports.list_reports(db, user.id, search="%%")

    assert found == []
    assert total == 0


def test_recent_summaries_limit(db, user):
    for i in range(5):
        make_report(db, user, original_name=f"r{i}.png")

    recent = reports.recent_summaries(db, user.id, limit=3)

    assert [r.original_name for r in recent] == ["r4.png", "r3.png", "r2.png"]
