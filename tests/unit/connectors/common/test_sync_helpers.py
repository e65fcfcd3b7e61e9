import pytest

from knowledge_connectors.connectors.common.cancellation import (
    CancellationToken,
    bind_cancellation,
    check_cancelled,
)
from knowledge_connectors.connectors.common.schemas import (
    ConnectorItem,
    HealthChecks,
    PermissionsCheck,
    QuotaCheck,
)
from knowledge_connectors.connectors.common.sync_hash import generate_sync_hash
from knowledge_connectors.connectors.common.sync_tracker import SyncTracker
from knowledge_connectors.connectors.common.text import extract_excerpt, html_to_text
from knowledge_connectors.connectors.exceptions import (
    ConnectorException,
    ErrorCode,
    SyncCancelledException,
)


def _item(external_id: str) -> ConnectorItem:
    return ConnectorItem(
        id=f"test-{external_id}",
        connector_id="connector-1",
        external_id=external_id,
        title="Title",
        content="Body",
        content_type="text",
        synced_at="2024-01-01T00:00:00+00:00",
        sync_hash="abc",
    )


def test_sync_hash_is_stable_and_sensitive_to_changes() -> None:
    first = generate_sync_hash(
        title="Handbook", content="Welcome", external_updated_at="2024-01-01"
    )
    second = generate_sync_hash(
        title="Handbook", content="Welcome", external_updated_at="2024-01-01"
    )
    changed = generate_sync_hash(
        title="Handbook", content="Welcome!", external_updated_at="2024-01-01"
    )

    assert first == second
    assert first != changed
    assert len(first) == 16
    assert generate_sync_hash(
        title="a", content="b", external_updated_at=None, metadata={"md5": "1"}
    ) != generate_sync_hash(
        title="a", content="b", external_updated_at=None, metadata={"md5": "2"}
    )


def test_html_to_text_strips_markup_and_scripts() -> None:
    html = "<h1>Title</h1><script>alert(1)</script><p>Some   <b>bold</b>\ntext</p>"
    assert html_to_text(html) == "Title Some bold text"
    assert html_to_text("") == ""


def test_extract_excerpt_truncates() -> None:
    assert extract_excerpt("<p>short</p>") == "short"
    excerpt = extract_excerpt("word " * 100, max_length=20)
    assert excerpt.endswith("...")
    assert len(excerpt) <= 23


def test_sync_tracker_counts_add_up() -> None:
    tracker = SyncTracker("connector-1")
    tracker.record_new(_item("1"))
    tracker.record_updated(_item("2"))
    tracker.record_unchanged(_item("3"))
    tracker.record_deleted("4")
    tracker.record_failure("5", "Broken", ConnectorException("bad", ErrorCode.EXPORT_FAILED))

    result = tracker.build(cursor="next", has_more=True)
    stats = result.stats

    assert result.status == "partial"
    assert stats.total_discovered == 5
    assert (
        stats.new_items
        + stats.updated_items
        + stats.deleted_items
        + stats.failed_items
        + stats.unchanged_items
        == stats.total_discovered
    )
    assert result.errors[0].code == "EXPORT_FAILED"
    assert result.deleted_external_ids == ["4"]
    assert [item.external_id for item in result.items] == ["1", "2", "3"]
    assert result.cursor == "next"
    assert result.has_more is True


def test_sync_tracker_success_and_failed_results() -> None:
    tracker = SyncTracker("connector-1")
    tracker.record_new(_item("1"))
    assert tracker.build().status == "success"

    failed = tracker.build_failed(RuntimeError("boom"), cursor="previous")
    assert failed.status == "failed"
    assert failed.cursor == "previous"
    assert failed.has_more is False
    assert failed.errors[-1].external_id == "sync"
    assert failed.errors[-1].error == "boom"
    assert failed.stats.failed_items == 0


def test_cancellation_token_manual_and_deadline() -> None:
    token = CancellationToken()
    assert not token.cancelled
    token.cancel("user request")
    assert token.cancelled
    with pytest.raises(SyncCancelledException, match="user request"):
        token.raise_if_cancelled()

    expired = CancellationToken(timeout=0)
    assert expired.cancelled
    with pytest.raises(SyncCancelledException) as exc_info:
        expired.raise_if_cancelled()
    assert exc_info.value.code == ErrorCode.SYNC_CANCELLED


def test_check_cancelled_uses_bound_token() -> None:
    check_cancelled()

    token = CancellationToken()
    with bind_cancellation(token):
        check_cancelled()
        token.cancel()
        with pytest.raises(SyncCancelledException):
            check_cancelled()

    check_cancelled()


def test_health_checks_overall_status() -> None:
    checks = HealthChecks()
    assert checks.overall_status() == "unhealthy"

    checks.authentication.status = "pass"
    checks.connectivity.status = "pass"
    assert checks.overall_status() == "degraded"

    checks.permissions = PermissionsCheck(status="pass")
    assert checks.overall_status() == "healthy"

    checks.quota = QuotaCheck(status="warn")
    assert checks.overall_status() == "degraded"
