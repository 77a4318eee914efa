"""Tests for topic matching and topic helpers."""
from __future__ import annotations

import pytest

from lorabridge.topics import device_uplink_topic, matches, sanitize_client_id


class TestMatches:
    def test_wildcard_middle_segment(self):
        assert matches("a/b/c", "a/+/c") is True

    def test_segment_count_mismatch(self):
        assert matches("a/b/c", "a/+") is False

    def test_trailing_wildcard(self):
        assert matches("a/b", "a/+") is True

    def test_literal_match(self):
        assert matches("v1/devices/me/attributes", "v1/devices/me/attributes") is True

    def test_literal_mismatch(self):
        assert matches("v1/devices/me/telemetry", "v1/devices/me/attributes") is False

    def test_wildcard_needs_non_empty_segment(self):
        assert matches("a//c", "a/+/c") is False
        assert matches("a/", "a/+") is False

    def test_rpc_request_topic(self):
        assert matches("v1/devices/me/rpc/request/42", "v1/devices/me/rpc/request/+") is True
        assert matches("v1/devices/me/rpc/request", "v1/devices/me/rpc/request/+") is False
        assert matches("v1/devices/me/rpc/request/42/x", "v1/devices/me/rpc/request/+") is False

    def test_chirpstack_uplink_topic(self):
        pattern = "application/+/device/+/event/up"
        assert matches("application/abc/device/0102030405060708/event/up", pattern) is True
        assert matches("application/abc/device/0102030405060708/event/join", pattern) is False

    def test_hash_is_not_a_wildcard(self):
        assert matches("a/b/c", "a/#") is False
        assert matches("a/#", "a/#") is True

    def test_regex_characters_are_literal(self):
        assert matches("a/b.c", "a/b.c") is True
        assert matches("a/bxc", "a/b.c") is False

    @pytest.mark.parametrize("topic,pattern", [("a/b/c", "a/+/c"), ("x", "y"), ("", "+")])
    def test_pure(self, topic, pattern):
        assert matches(topic, pattern) == matches(topic, pattern)


class TestDeviceUplinkTopic:
    def test_fills_device_segment(self):
        assert device_uplink_topic("d1") == "application/+/device/d1/event/up"

    def test_custom_pattern(self):
        assert device_uplink_topic("d1", "gw/+/device/+/up") == "gw/+/device/d1/up"

    def test_pattern_without_device_segment(self):
        assert device_uplink_topic("d1", "uplinks/+") == "uplinks/+"


class TestSanitizeClientId:
    def test_alphanumeric(self):
        assert sanitize_client_id("0102030405060708") == "tb_0102030405060708"

    def test_special_chars(self):
        assert sanitize_client_id("Test@Node#1") == "tb_TestNode1"

    def test_spaces_to_underscores(self):
        assert sanitize_client_id("Test Node") == "tb_Test_Node"

    def test_max_length(self):
        assert len(sanitize_client_id("A" * 100)) == 23

    def test_custom_prefix(self):
        assert sanitize_client_id("Node", prefix="custom_") == "custom_Node"
