"""Parsing of receipt-extraction responses."""

from shiori.tools.receipt import parse_items_from_json_text, strip_code_fences


def test_code_fences_are_stripped():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('```{"a": 1}```') == '{"a": 1}'
    assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'


def test_items_and_store_name_are_extracted():
    text = '```json\n{"storeName": " 京都駅売店 ", "items": [{"name": " お茶 ", "amount": 150}, {"name": "八ツ橋", "amount": "¥1,200"}]}\n```'

    parsed = parse_items_from_json_text(text)

    assert parsed is not None
    assert parsed.store_name == "京都駅売店"
    assert [(i.name, i.amount) for i in parsed.items] == [("お茶", 150), ("八ツ橋", 1200)]
    assert parsed.model_dump(by_alias=True, exclude_none=True) == {
        "items": [{"name": "お茶", "amount": 150}, {"name": "八ツ橋", "amount": 1200}],
        "storeName": "京都駅売店",
    }


def test_alternate_store_keys_are_recognised():
    parsed = parse_items_from_json_text('{"店名": "ローソン", "items": [{"name": "水", "amount": 100}]}')

    assert parsed is not None
    assert parsed.store_name == "ローソン"


def test_invalid_items_are_dropped():
    text = '{"items": [{"name": "", "amount": 1}, {"name": "x", "amount": null}, {"name": 5, "amount": 1}, {"name": "ok", "amount": 9.5}, "junk"]}'

    parsed = parse_items_from_json_text(text)

    assert parsed is not None
    assert [(i.name, i.amount) for i in parsed.items] == [("ok", 9.5)]
    assert parsed.store_name is None


def test_unusable_responses_return_none():
    assert parse_items_from_json_text("") is None
    assert parse_items_from_json_text("not json") is None
    assert parse_items_from_json_text("[1, 2]") is None
    assert parse_items_from_json_text('{"items": "none"}') is None
    assert parse_items_from_json_text('{"items": []}') is None
