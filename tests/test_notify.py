"""Tests for the webhook notifier and report payload."""
import json
from datetime import datetime, timezone

import requests

from db_backup.config import WebhookSettings
from db_backup.notify import WebhookNotifier, parse_auth_header, parse_extra_headers
from db_backup.report import build_report
from db_backup.restic import SnapshotSummary


class FakeResponse:
    def __init__(self, status_code=200, text="ok"):
        self.status_code = status_code
        self.text = text


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response or FakeResponse()
        self.exc = exc
        self.requests = []

    def request(self, method, url, data=None, headers=None, timeout=None):
        self.requests.append({"method": method, "url": url, "data": data, "headers": headers, "timeout": timeout})
        if self.exc:
            raise self.exc
        return self.response


def _report(exit_code=0, snapshot_id="abc123"):
    started = datetime(2024, 5, 1, 2, 0, 0, tzinfo=timezone.utc)
    finished = datetime(2024, 5, 1, 2, 0, 42, tzinfo=timezone.utc)
    return build_report(
        exit_code=exit_code,
        started_at=started,
        finished_at=finished,
        duration_seconds=42,
        repository="s3:bucket/repo",
        db_type="postgres",
        host="db.internal",
        tags=["db", "encrypted"],
        summary=SnapshotSummary(snapshot_id=snapshot_id, data_added=512, total_duration=12.9, files_new=3),
        snapshot_id=snapshot_id,
    )


def test_extra_headers_drop_pairs_without_equals():
    assert parse_extra_headers("X-Env=prod, X-Team = data ,broken,=novalue,X-Token=a=b") == {
        "X-Env": "prod",
        "X-Team": "data",
        "X-Token": "a=b",
    }
    assert parse_extra_headers("") == {}
    assert parse_extra_headers(None) == {}


def test_auth_header_forms():
    assert parse_auth_header("Authorization: Bearer abc") == {"Authorization": "Bearer abc"}
    assert parse_auth_header("X-Api-Key: k") == {"X-Api-Key": "k"}
    assert parse_auth_header("Bearer abc") == {"Authorization": "Bearer abc"}
    assert parse_auth_header("   ") == {}


def test_payload_shape():
    payload = _report().to_payload()
    assert payload == {
        "status": "success",
        "message": "Backup succeeded",
        "startedAt": "2024-05-01T02:00:00Z",
        "finishedAt": "2024-05-01T02:00:42Z",
        "durationSeconds": 42,
        "repository": "s3:bucket/repo",
        "dbType": "postgres",
        "host": "db.internal",
        "tags": ["db", "encrypted"],
        "snapshotId": "abc123",
        "dataAddedBytes": 512,
        "totalBytesProcessed": 0,
        "totalDurationSeconds": 12,
        "filesNew": 3,
        "filesChanged": 0,
        "filesUnmodified": 0,
    }


def test_failed_report_message_embeds_exit_code():
    report = _report(exit_code=7, snapshot_id="")
    assert report.status == "failed"
    assert report.message == "Backup failed (exitcode=7)"
    assert report.to_payload()["snapshotId"] is None


def test_no_url_is_a_noop():
    session = FakeSession()
    notifier = WebhookNotifier(WebhookSettings(), session=session)
    assert notifier.send(_report()) is False
    assert session.requests == []


def test_send_uses_method_headers_and_timeout():
    session = FakeSession()
    settings = WebhookSettings(
        url="https://hooks.example.test/backup",
        method="put",
        auth_header="Authorization: Bearer t0ken",
        extra_headers="X-Env=prod,junk",
        timeout_seconds=5,
    )

    assert WebhookNotifier(settings, session=session).send(_report()) is True

    sent = session.requests[0]
    assert sent["method"] == "PUT"
    assert sent["url"] == "https://hooks.example.test/backup"
    assert sent["timeout"] == 5
    assert sent["headers"]["Content-Type"] == "application/json"
    assert sent["headers"]["Authorization"] == "Bearer t0ken"
    assert sent["headers"]["X-Env"] == "prod"
    assert "junk" not in sent["headers"]
    assert json.loads(sent["data"])["snapshotId"] == "abc123"


def test_delivery_failure_is_swallowed_and_logged(caplog):
    session = FakeSession(exc=requests.Timeout("timed out"))
    notifier = WebhookNotifier(WebhookSettings(url="https://hooks.example.test"), session=session)

    with caplog.at_level("WARNING"):
        assert notifier.send(_report()) is False

    assert "Webhook send failed" in caplog.text


def test_http_error_status_is_not_raised():
    session = FakeSession(response=FakeResponse(status_code=503, text="unavailable"))
    notifier = WebhookNotifier(WebhookSettings(url="https://hooks.example.test"), session=session)
    assert notifier.send(_report()) is False
