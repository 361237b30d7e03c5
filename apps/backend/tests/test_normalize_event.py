import time

import pytest

from tracker.schemas.events import BeaconBody, PixelParams, RequestMeta
from tracker.services.normalize_event import decode_payload, normalize, normalize_raw

META = RequestMeta(source_ip="203.0.113.9", user_agent="Mozilla/5.0")

BEACON_FIELDS = [
    "url", "ref", "uid", "event_type", "event_name", "element_tag", "element_text",
    "link_url", "button_type", "form_id", "duration", "timestamp",
]

ODD_VALUES = [
    None, "", " ", 0, -1, 1.5, float("nan"), True, False,
    [], [1, 2], {}, {"nested": {"a": 1}}, "x" * 1000, "9" * 40, "-12abc", "é中\U0001f600",
    10**5000, "\ud800x", ["\udc00"],
]


def _value_id(v):
    if isinstance(v, int) and v.bit_length() > 64:
        return f"int<{v.bit_length()} bits>"
    return repr(v)[:40]


def _storable(rec):
    # every text field must survive the UTF-8 encode done by the sqlite driver
    for value in rec.model_dump().values():
        if isinstance(value, str):
            value.encode("utf-8")


def test_pixel_defaults():
    rec = normalize_raw("pixel", {"u": "http://example.com", "uid": "v-1"}, META)

    assert rec.delivery_kind == "pixel"
    assert rec.page_url == "http://example.com"
    assert rec.referrer_url == ""
    assert rec.visitor_id == "v-1"
    assert rec.event_type == "page_view"
    assert rec.source_ip == "203.0.113.9"
    assert rec.user_agent == "Mozilla/5.0"
    assert rec.event_name is None
    assert rec.duration_ms is None
    assert rec.client_timestamp is None


def test_pixel_ignores_beacon_only_fields():
    rec = normalize_raw("pixel", {"u": "/a", "event_name": "signup", "duration": "10"}, META)
    assert rec.event_name is None
    assert rec.duration_ms is None


def test_empty_event_type_falls_back_to_page_view():
    assert normalize_raw("pixel", {"event_type": ""}).event_type == "page_view"
    assert normalize_raw("beacon", {"event_type": None}).event_type == "page_view"
    assert normalize_raw("beacon", {"event_type": "click"}).event_type == "click"


def test_beacon_full_payload():
    raw = {
        "url": "https://shop.test/cart",
        "ref": "https://google.com/",
        "uid": "abc123",
        "event_type": "click",
        "event_name": "checkout_button",
        "element_tag": "button",
        "element_text": "Checkout",
        "link_url": "https://shop.test/pay",
        "button_type": "submit",
        "form_id": "cart",
        "duration": "1500",
        "timestamp": 1700000000123,
    }
    rec = normalize_raw("beacon", raw, META, now=1700000000)

    assert rec.delivery_kind == "beacon"
    assert rec.occurred_at == 1700000000
    assert rec.page_url == "https://shop.test/cart"
    assert rec.referrer_url == "https://google.com/"
    assert rec.event_name == "checkout_button"
    assert rec.element_tag == "button"
    assert rec.element_text == "Checkout"
    assert rec.link_url == "https://shop.test/pay"
    assert rec.button_type == "submit"
    assert rec.form_id == "cart"
    assert rec.duration_ms == 1500
    assert rec.client_timestamp == 1700000000123


def test_element_text_truncated_to_200():
    rec = normalize_raw("beacon", {"element_text": "a" * 201})
    assert rec.element_text == "a" * 200

    rec = normalize_raw("beacon", {"element_text": "b" * 200})
    assert rec.element_text == "b" * 200


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("abc", None),
        ("", None),
        ("1500", 1500),
        (" 42 ", 42),
        ("1500ms", 1500),
        (12.9, 12),
        (300, 300),
        (-5, None),
        ("-5", None),
        (True, None),
        ([10], None),
        ("9" * 40, None),
    ],
)
def test_duration_parsing(raw, expected):
    assert normalize_raw("beacon", {"duration": raw}).duration_ms == expected


def test_client_timestamp_never_moves_occurred_at():
    before = int(time.time())
    rec = normalize_raw("beacon", {"timestamp": "42"})
    after = int(time.time())

    assert rec.client_timestamp == 42
    assert before <= rec.occurred_at <= after


def test_caller_cannot_set_core_fields():
    raw = {"kind": "pixel", "occurred_at": 5, "ts": 5, "delivery_kind": "pixel", "id": 99}
    rec = normalize_raw("beacon", raw)

    assert rec.delivery_kind == "beacon"
    assert rec.occurred_at > 5


def test_scalars_are_stringified():
    rec = normalize_raw("beacon", {"url": 123, "uid": 4.0, "event_name": True, "form_id": 0})

    assert rec.page_url == "123"
    assert rec.visitor_id == "4"
    assert rec.event_name == "true"
    assert rec.form_id == "0"


def test_objects_and_arrays_are_stored_as_json_text():
    rec = normalize_raw("beacon", {"event_name": {"a": 1, "b": [True, None]}, "form_id": [1, "x"]})

    assert rec.event_name == '{"a":1,"b":[true,null]}'
    assert rec.form_id == '[1,"x"]'


def test_lone_surrogates_become_replacement_chars():
    rec = normalize_raw("beacon", {"url": "\ud800x", "element_text": ["\udfff"]}, META)

    assert rec.page_url.endswith("x")
    assert "�" in rec.page_url
    assert "\ud800" not in rec.page_url
    assert "�" in rec.element_text
    _storable(rec)


def test_surrogate_pair_text_is_kept():
    rec = normalize_raw("beacon", {"element_text": "ok \U0001f600"})
    assert rec.element_text == "ok \U0001f600"


def test_oversized_int_stringifies_to_empty():
    rec = normalize_raw("beacon", {"url": 10**5000, "uid": 10**5000, "duration": 10**5000})

    assert rec.page_url == ""
    assert rec.visitor_id == ""
    assert rec.duration_ms is None


def test_empty_optional_strings_become_none():
    rec = normalize_raw("beacon", {"event_name": "", "link_url": None, "element_text": ""})
    assert rec.event_name is None
    assert rec.link_url is None
    assert rec.element_text is None


@pytest.mark.parametrize("body", [None, [], ["a", "b"], "just a string", 17])
def test_non_object_body_decodes_to_empty_payload(body):
    payload = decode_payload("beacon", body)
    assert isinstance(payload, BeaconBody)

    rec = normalize(payload, META)
    assert rec.page_url == ""
    assert rec.event_type == "page_view"


def test_decode_picks_variant_by_kind():
    assert isinstance(decode_payload("pixel", {"u": "/"}), PixelParams)
    assert isinstance(decode_payload("beacon", {"url": "/"}), BeaconBody)


@pytest.mark.parametrize("field", BEACON_FIELDS)
@pytest.mark.parametrize("value", ODD_VALUES, ids=_value_id)
def test_normalize_never_raises(field, value):
    now = int(time.time())
    rec = normalize_raw("beacon", {field: value}, META)

    assert rec.delivery_kind == "beacon"
    assert rec.occurred_at <= now + 1
    assert rec.element_text is None or len(rec.element_text) <= 200
    assert rec.duration_ms is None or rec.duration_ms >= 0
    assert isinstance(rec.page_url, str)
    assert isinstance(rec.visitor_id, str)
    _storable(rec)


@pytest.mark.parametrize("field", ["u", "r", "uid", "event_type"])
@pytest.mark.parametrize("value", ODD_VALUES, ids=_value_id)
def test_pixel_normalize_never_raises(field, value):
    rec = normalize_raw("pixel", {field: value})
    assert rec.delivery_kind == "pixel"
    assert rec.event_type
    _storable(rec)
