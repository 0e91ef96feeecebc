from unittest.mock import Mock

from inkwell.agent.broadcaster import StreamBroadcaster


def test_without_stream_id_nothing_is_sent(broadcaster, channel):
    broadcaster.on_chunk(None, "Hello")
    broadcaster.on_tool_status(None, "Visiting https://example.org")
    broadcaster.on_complete(None)
    broadcaster.on_error(None, "boom")

    assert channel.events == []


def test_chunks_then_a_single_done(broadcaster, channel):
    broadcaster.on_chunk("s1", "Hel")
    broadcaster.on_chunk("s1", "lo")
    broadcaster.on_complete("s1")
    broadcaster.on_complete("s1")

    assert channel.payloads("s1") == [{"content": "Hel"}, {"content": "lo"}, {"done": True}]


def test_empty_deltas_are_skipped(broadcaster, channel):
    broadcaster.on_chunk("s1", "")
    broadcaster.on_chunk("s1", None)

    assert channel.events == []


def test_error_replaces_done_and_later_events_are_dropped(broadcaster, channel):
    broadcaster.on_chunk("s2", "Partial")
    broadcaster.on_error("s2", "Tool 'navigate' failed: connection refused")
    broadcaster.on_complete("s2")
    broadcaster.on_chunk("s2", "more")

    assert channel.payloads("s2") == [
        {"content": "Partial"},
        {"error": "Tool 'navigate' failed: connection refused"},
    ]
    assert broadcaster.is_terminated("s2")


def test_tool_status_payload(broadcaster, channel):
    broadcaster.on_tool_status("s3", "Visiting https://example.org")

    assert channel.payloads("s3") == [{"tool_status": "Visiting https://example.org"}]


def test_channel_failures_are_swallowed():
    channel = Mock()
    channel.broadcast.side_effect = RuntimeError("channel down")
    broadcaster = StreamBroadcaster(channel)

    broadcaster.on_chunk("s4", "Hello")
    broadcaster.on_complete("s4")

    assert channel.broadcast.call_count == 2
    assert broadcaster.is_terminated("s4")


def test_terminal_tracking_is_bounded(channel):
    broadcaster = StreamBroadcaster(channel, max_tracked_streams=2)

    for stream_id in ("a", "b", "c"):
        broadcaster.on_complete(stream_id)

    assert not broadcaster.is_terminated("a")
    assert broadcaster.is_terminated("b")
    assert broadcaster.is_terminated("c")
