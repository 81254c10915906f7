"""Tests for label selector parsing and matching."""

import pytest

from sfoperators.errors import ConfigurationError
from sfoperators.schemas import ResourceState
from sfoperators.store import LabelSelector, state_selector


class TestLabelSelector:
    @pytest.mark.parametrize("selector,labels,expected", [
        ("state=in_queue", {"state": "in_queue"}, True),
        ("state==in_queue", {"state": "in_progress"}, False),
        ("state!=failed", {"state": "in_queue"}, True),
        ("state!=failed", {}, True),
        ("state in (in_queue,aborting)", {"state": "aborting"}, True),
        ("state in (in_queue,aborting)", {"state": "failed"}, False),
        ("state notin (failed, succeeded)", {"state": "in_queue"}, True),
        ("instance_guid", {"instance_guid": "x"}, True),
        ("instance_guid", {"state": "x"}, False),
        ("state in (in_queue),instance_guid=abc", {"state": "in_queue", "instance_guid": "abc"}, True),
        ("state in (in_queue),instance_guid=abc", {"state": "in_queue", "instance_guid": "def"}, False),
    ])
    def test_matches(self, selector, labels, expected):
        assert LabelSelector.parse(selector).matches(labels) is expected

    def test_empty_selector_matches_everything(self):
        assert LabelSelector.parse(None).matches({"a": "b"})
        assert LabelSelector.parse("  ").matches({})

    def test_invalid_requirement(self):
        with pytest.raises(ConfigurationError, match="Invalid label selector"):
            LabelSelector.parse("state in in_queue")

    def test_str(self):
        selector = LabelSelector.parse("state in (b,a),owner=me")
        assert str(selector) == "state in (a,b),owner=me"


def test_state_selector():
    selector = state_selector([ResourceState.IN_QUEUE, ResourceState.ABORTING])
    assert selector == "state in (in_queue,aborting)"
    assert LabelSelector.parse(selector).matches({"state": "aborting"})
