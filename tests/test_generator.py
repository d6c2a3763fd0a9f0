"""
tests/test_generator.py
=======================

The REST client for the server-side task generation function, with
`requests.post` patched out.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from regtrack.generator import GeneratedTaskRow, RemoteTaskGenerator
from regtrack.models import Frequency
from regtrack.settings import Settings


def _response(payload, status=200):
    resp = MagicMock()
    resp.json.return_value = payload
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return resp


def test_from_settings_requires_url():
    assert RemoteTaskGenerator.from_settings(Settings(supabase_url="")) is None
    gen = RemoteTaskGenerator.from_settings(Settings(supabase_url="https://proj.supabase.co/", supabase_key="k"))
    assert gen.url == "https://proj.supabase.co/rest/v1/rpc/generate_compliance_tasks_for_startup"


@patch("regtrack.generator.requests.post")
def test_generate_posts_startup_id(mock_post):
    mock_post.return_value = _response([{
        "task_id": "rule_1_7_2024",
        "entity_identifier": "parent",
        "entity_display_name": "Parent Company (IN)",
        "year": 2024,
        "task_name": "Annual Return",
        "ca_required": True,
        "cs_required": False,
        "task_type": "firstYear",
    }])
    rows = RemoteTaskGenerator("https://proj.supabase.co", "secret").generate(7)

    args, kwargs = mock_post.call_args
    assert kwargs["json"] == {"startup_id_param": 7}
    assert kwargs["headers"]["Authorization"] == "Bearer secret"
    assert rows == [GeneratedTaskRow(
        task_id="rule_1_7_2024", entity_identifier="parent", entity_display_name="Parent Company (IN)",
        year=2024, task_name="Annual Return", ca_required=True, cs_required=False, task_type="firstYear",
    )]
    assert rows[0].frequency is Frequency.FIRST_YEAR


@patch("regtrack.generator.requests.post")
def test_generate_raises_on_http_error(mock_post):
    mock_post.return_value = _response({"message": "function not found"}, status=404)
    with pytest.raises(requests.HTTPError):
        RemoteTaskGenerator("https://proj.supabase.co", "secret").generate(7)


@patch("regtrack.generator.requests.post")
def test_generate_rejects_non_list_payload(mock_post):
    mock_post.return_value = _response({"unexpected": True})
    with pytest.raises(ValueError):
        RemoteTaskGenerator("https://proj.supabase.co").generate(7)
