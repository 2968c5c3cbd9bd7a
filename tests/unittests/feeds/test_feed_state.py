import json

from rpde_proxy.feeds.errors import ErrorCategory, FetchError
from rpde_proxy.feeds.feed_state import FeedLifecycleStage, FeedState
from rpde_proxy.feeds.retry_policy import RetryDecision


def _busy_state() -> FeedState:
    state = FeedState.for_registration("leisure", "https://origin.example/feed")
    state.pages_read = 12
    state.items_read = 3400
    state.poll_attempts = 15
    state.error_count = 2
    state.purged_items = 500
    state.consecutive_empty_last_page_reads = 4
    state.registration_attempts = 1
    state.purge_retries = 3
    state.retry_state = RetryDecision(category=ErrorCategory.FETCH_ERROR, retry_count=1)
    return state


class TestFeedState:
    def test_new_registration_starts_with_a_purge_at_source(self):
        state = FeedState.for_registration(
            "leisure", "https://origin.example/feed", dataset_url="https://origin.example/"
        )

        assert state.stage == FeedLifecycleStage.PURGING
        assert state.cursor_url == state.source_url
        assert state.purge_cycle_count == -1
        assert state.deleted_item_retention_days == 7

    def test_encodes_with_camel_case_keys(self):
        state = FeedState.for_registration("leisure", "https://origin.example/feed")

        payload = json.loads(state.encode())

        assert payload["sourceUrl"] == "https://origin.example/feed"
        assert payload["cursorUrl"] == "https://origin.example/feed"
        assert payload["stage"] == "purging"
        assert "consecutiveEmptyLastPageReads" in payload

    def test_decode_restores_encoded_state(self):
        state = _busy_state()

        restored = FeedState.decode(state.encode())

        assert restored == state

    def test_reset_counters_zeroes_progress_but_keeps_identity(self):
        state = _busy_state()
        state.advance_cursor("https://origin.example/feed?afterId=9")
        instance_id = state.instance_id

        state.reset_counters()

        assert state.pages_read == 0
        assert state.items_read == 0
        assert state.poll_attempts == 0
        assert state.error_count == 0
        assert state.purged_items == 0
        assert state.consecutive_empty_last_page_reads == 0
        assert state.registration_attempts == 0
        assert state.purge_retries == 0
        assert state.retry_state is None
        assert state.instance_id == instance_id
        assert state.cursor_url == "https://origin.example/feed?afterId=9"

    def test_restart_from_source_rewinds_cursor(self):
        state = _busy_state()
        state.advance_cursor("https://origin.example/feed?afterId=9")

        state.restart_from_source()

        assert state.cursor_url == "https://origin.example/feed"

    def test_record_and_clear_failure(self):
        state = FeedState.for_registration("leisure", "https://origin.example/feed")
        decision = RetryDecision(category=ErrorCategory.FETCH_ERROR, delay_seconds=1)

        state.record_failure(decision, FetchError("connection reset"))

        assert state.retry_state == decision
        assert state.last_error_text == "connection reset"
        assert state.error_count == 1

        state.clear_failure()

        assert state.retry_state is None
        assert state.last_error_text is None
        assert state.error_count == 1

    def test_with_stage_touches_modified_time(self):
        state = FeedState.for_registration("leisure", "https://origin.example/feed")
        before = state.modified_at

        state.with_stage(FeedLifecycleStage.REGISTERING)

        assert state.stage == FeedLifecycleStage.REGISTERING
        assert state.modified_at >= before
