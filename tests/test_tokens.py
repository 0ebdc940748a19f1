import pytest

from tokstat_errors import ConfigError, InternalConsistencyError
from tokstat_schema import infer_schema
from tokstat_tokens import (
    KEY,
    NULL_VALUE,
    STRUCTURAL,
    VALUE,
    JsonLexTokenizer,
    attribute_tokens,
    collect_values,
    count_tokens,
    get_tokenizer,
    serialize,
    token_spans,
    tokenize_document,
)

DOCS = [
    {"title": "Héllo wörld ✓", "n": 12345, "ok": True, "gone": None},
    {"title": "日本語のテキスト", "tags": ["a", "bb", None], "nested": {"x": [1, {"y": "z"}]}},
    {"emoji": "🙂🙂", "empty": {}, "list": []},
]


def _total(per_path):
    return sum(t.total for t in per_path.values())


def test_serialize_is_minified_json():
    doc = {"a": "x", "b": [1, None], "c": {"d": True}}
    text, tags = serialize(doc, infer_schema([doc]))
    assert text == '{"a":"x","b":[1,null],"c":{"d":true}}'
    assert len(tags) == len(text)


def test_serialize_tags_categories():
    doc = {"a": None}
    text, tags = serialize(doc, infer_schema([doc]))
    assert text == '{"a":null}'
    assert tags[0] == ("root", STRUCTURAL)
    assert tags[1:5] == [("root.a", KEY)] * 4
    assert tags[5:9] == [("root.a", NULL_VALUE)] * 4
    assert tags[9] == ("root", STRUCTURAL)


def test_serialize_array_punctuation_belongs_to_array():
    doc = {"t": ["x", "y"]}
    text, tags = serialize(doc, infer_schema([doc]))
    assert text == '{"t":["x","y"]}'
    assert tags[text.index("[")] == ("root.t", STRUCTURAL)
    assert tags[text.index(",")] == ("root.t", STRUCTURAL)
    assert tags[text.index('"x"')] == ("root.t[]", VALUE)


@pytest.mark.parametrize("tokenizer_fixture", ["lex", "chars", "byte_level"])
def test_token_conservation(tokenizer_fixture, request):
    tokenizer = request.getfixturevalue(tokenizer_fixture)
    schema = infer_schema(DOCS)
    for doc in DOCS:
        text, _ = serialize(doc, schema)
        per_path = tokenize_document(doc, schema, tokenizer)
        assert _total(per_path) == count_tokens(tokenizer, text)


def test_char_tokenizer_counts_by_category(chars):
    doc = {"a": "xy", "b": None}
    per_path = tokenize_document(doc, infer_schema([doc]), chars)
    # {"a":"xy","b":null}
    assert per_path["root"].schema_overhead == 3
    assert per_path["root.a"].schema_overhead == 4
    assert per_path["root.a"].value_payload == 4
    assert per_path["root.b"].schema_overhead == 4
    assert per_path["root.b"].null_waste == 4


def test_lex_tokenizer_round_trips_text(lex):
    text = '{"name":"a fairly long string","n":-12.5e3,"ok":false}'
    assert lex.decode(lex.encode(text)) == text


def test_lex_tokenizer_unknown_id(lex):
    with pytest.raises(ValueError):
        lex.decode([999])


def test_lex_tokenizer_vocab_is_per_instance():
    first = JsonLexTokenizer()
    first.encode('{"abc":"defghijk"}')
    second = JsonLexTokenizer()
    assert first.vocab_size > 0
    assert second.vocab_size == 0


def test_get_tokenizer_approx_returns_fresh_instance():
    a = get_tokenizer("approx_json_lex")
    b = get_tokenizer("approx_json_lex")
    assert isinstance(a, JsonLexTokenizer)
    assert a is not b


def test_get_tokenizer_unknown_encoding():
    with pytest.raises(ConfigError):
        get_tokenizer("no_such_encoding_base")


def test_plurality_tie_goes_to_first_pair():
    tags = [("root.a", KEY), ("root.a", KEY), ("root.b", KEY), ("root.b", KEY)]
    per_path = attribute_tokens([(0, 4)], tags)
    assert per_path["root.a"].schema_overhead == 1
    assert "root.b" not in per_path


def test_zero_width_token_goes_to_tag_at_position():
    tags = [("root", STRUCTURAL), ("root.a", VALUE)]
    per_path = attribute_tokens([(0, 1), (1, 1), (1, 2)], tags)
    assert per_path["root"].schema_overhead == 1
    assert per_path["root.a"].value_payload == 2


def test_byte_level_spans_cover_split_characters(byte_level):
    text = "aé"
    spans = token_spans(byte_level, byte_level.encode(text), text)
    assert spans == [(0, 1), (1, 2), (1, 2)]


def test_multibyte_value_counted_in_bytes(byte_level):
    doc = {"s": "é✓"}
    per_path = tokenize_document(doc, infer_schema([doc]), byte_level)
    # "é✓" is a quote, 2 + 3 bytes, and a quote
    assert per_path["root.s"].value_payload == 7
    assert per_path["root.s"].schema_overhead == len('"s":')
    assert _total(per_path) == len('{"s":"é✓"}'.encode("utf-8"))


def test_schema_mismatch_raises():
    schema = infer_schema([{"a": 1}])
    with pytest.raises(InternalConsistencyError):
        serialize({"a": 1, "b": 2}, schema)
    with pytest.raises(InternalConsistencyError):
        collect_values({"b": 2}, schema)


def test_collect_values_skips_nulls_and_flattens_arrays():
    doc = {"a": "x", "b": None, "tags": ["p", None, "q"], "rows": [{"n": 1}, {"n": 2}]}
    values = collect_values(doc, infer_schema([doc]))
    assert values == {
        "root.a": ["x"],
        "root.tags[]": ["p", "q"],
        "root.rows[].n": [1, 2],
    }


def test_tiktoken_conservation():
    try:
        encoding = get_tokenizer("o200k_base")
    except Exception as e:
        pytest.skip(f"o200k_base unavailable: {e}")
    schema = infer_schema(DOCS)
    for doc in DOCS:
        text, _ = serialize(doc, schema)
        assert _total(tokenize_document(doc, schema, encoding)) == len(encoding.encode(text))
