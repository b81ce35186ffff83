import json

from backend.app.routers.realtime import format_sse, route_notification

STORE = "11111111-1111-1111-1111-111111111111"


def test_store_settings_notification_becomes_store_updated():
    payload = json.dumps({"store_id": STORE, "settings": {"is_open": False}})
    assert route_notification("store_settings", payload, STORE) == (
        "store.updated",
        {"store_id": STORE, "settings": {"is_open": False}},
    )


def test_device_deleted_carries_token_hash_for_local_matching():
    payload = json.dumps({"id": "dev-1", "store_id": STORE, "device_token_hash": "ab" * 32})
    event, data = route_notification("device_deleted", payload, STORE)
    assert event == "device.deleted"
    assert data["device_token_hash"] == "ab" * 32


def test_other_store_and_unknown_channels_are_dropped():
    other = json.dumps({"store_id": "someone-else", "settings": {}})
    assert route_notification("store_settings", other, STORE) is None
    assert route_notification("orders", json.dumps({"store_id": STORE}), STORE) is None
    assert route_notification("store_settings", "not json", STORE) is None


def test_null_settings_are_sent_as_empty_object():
    payload = json.dumps({"store_id": STORE, "settings": None})
    assert route_notification("store_settings", payload, STORE) == ("store.updated", {"store_id": STORE, "settings": {}})


def test_format_sse_frames_event_and_json_data():
    frame = format_sse("store.updated", {"store_id": STORE})
    assert frame == f'event: store.updated\ndata: {{"store_id": "{STORE}"}}\n\n'
