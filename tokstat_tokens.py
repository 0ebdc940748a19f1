"""
tokstat token attribution

Replays each document against the inferred schema to produce its canonical
minified JSON plus a per-character tag array, tokenizes the text once, and
attributes every whole token to the (path, category) pair owning the plurality
of its characters.

Categories:
  structural   braces, brackets and separating commas (owner: the container)
  key          a field's quoted name and its colon (owner: the field itself)
  value        string, number and boolean literals
  null_value   the literal null

key and structural tokens count as schema overhead, null_value as null waste,
value as payload. Every token of the document is attributed exactly once.

A tokenizer is any object with encode(str) -> list[int] and
decode(list[int]) -> str. tiktoken encodings are used for real encoding names;
"approx_json_lex" selects the offline JsonLexTokenizer below.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Optional

import tiktoken

from tokstat_errors import ConfigError, InternalConsistencyError
from tokstat_schema import ITEMS, SchemaNode, child_path

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tokenizers
# ---------------------------------------------------------------------------

APPROX_TOKENIZER = "approx_json_lex"

# JSON-aware lexer: every character of the input belongs to exactly one match
_LEXEME = re.compile(
    r"""(?sx)
    (?P<string> "(?:\\.|[^"\\])*" )
    | (?P<number> -?\d+(?:\.\d+)?(?:[eE][+-]?\d+)? )
    | (?P<word> true | false | null )
    | (?P<punct> [{}\[\]:,] )
    | (?P<other> \s+ | [A-Za-z]+ | . )
    """
)

# Characters per token for each lexeme kind (0 = whole lexeme is one token)
_PIECE_WIDTH = {
    "string": 4,
    "number": 3,
    "word": 0,
    "punct": 0,
    "other": 4,
}


class JsonLexTokenizer:
    """
    Offline token estimator exposing the encode/decode contract.

    String literals cost one token per 4 characters, numbers one per 3 digits,
    keywords and punctuation one each. Vocabulary and lexeme cache belong to
    the instance; create one per analysis run so memory does not grow across
    runs in a long-lived process.
    """

    name = APPROX_TOKENIZER

    def __init__(self):
        self._vocab: dict[str, int] = {}
        self._pieces: list[str] = []
        self._lexeme_cache: dict[str, list[int]] = {}

    def _piece_id(self, piece: str) -> int:
        token_id = self._vocab.get(piece)
        if token_id is None:
            token_id = len(self._pieces)
            self._vocab[piece] = token_id
            self._pieces.append(piece)
        return token_id

    def _encode_lexeme(self, lexeme: str, kind: str) -> list[int]:
        cached = self._lexeme_cache.get(lexeme)
        if cached is not None:
            return cached
        width = _PIECE_WIDTH[kind]
        if width == 0:
            pieces = [lexeme]
        else:
            pieces = [lexeme[i:i + width] for i in range(0, len(lexeme), width)]
        ids = [self._piece_id(p) for p in pieces]
        self._lexeme_cache[lexeme] = ids
        return ids

    def encode(self, text: str) -> list[int]:
        ids: list[int] = []
        for match in _LEXEME.finditer(text):
            ids.extend(self._encode_lexeme(match.group(), match.lastgroup))
        return ids

    def decode(self, tokens: list[int]) -> str:
        try:
            return "".join(self._pieces[t] for t in tokens)
        except IndexError:
            raise ValueError(f"Unknown token id in {tokens!r}") from None

    @property
    def vocab_size(self) -> int:
        return len(self._pieces)


def get_tokenizer(name: str):
    """Resolve an encoding name to a tokenizer object."""
    if name == APPROX_TOKENIZER:
        return JsonLexTokenizer()
    try:
        return tiktoken.get_encoding(name)
    except ValueError as e:
        raise ConfigError(f"Unknown tokenizer encoding: {name}") from e


def count_tokens(tokenizer, text: str) -> int:
    """Direct token count of `text`."""
    return len(tokenizer.encode(text))


# ---------------------------------------------------------------------------
# Span tagging
# ---------------------------------------------------------------------------

KEY = "key"
VALUE = "value"
NULL_VALUE = "null_value"
STRUCTURAL = "structural"

OVERHEAD_CATEGORIES = {KEY, STRUCTURAL}


def _dumps(value) -> str:
    return json.dumps(value, ensure_ascii=False)


def _items_node(node: SchemaNode) -> SchemaNode:
    items = node.children.get(ITEMS)
    if items is None:
        raise InternalConsistencyError(
            f"Schema mismatch: array elements at {child_path(node.path, ITEMS)} "
            f"were never observed during inference"
        )
    return items


def _field_node(node: SchemaNode, key: str) -> SchemaNode:
    child = node.children.get(key)
    if child is None:
        raise InternalConsistencyError(
            f"Schema mismatch: {child_path(node.path, key)} "
            f"was never observed during inference"
        )
    return child


def serialize(document: dict, schema: SchemaNode) -> tuple[str, list[tuple[str, str]]]:
    """
    Canonical minified JSON for `document` and one (path, category) tag per
    output character.
    """
    parts: list[str] = []
    tags: list[tuple[str, str]] = []

    def emit(text: str, path: str, category: str):
        parts.append(text)
        tags.extend([(path, category)] * len(text))

    def walk(value, node: SchemaNode):
        if value is None:
            emit("null", node.path, NULL_VALUE)
        elif isinstance(value, dict):
            emit("{", node.path, STRUCTURAL)
            for i, (key, child_value) in enumerate(value.items()):
                if i:
                    emit(",", node.path, STRUCTURAL)
                child = _field_node(node, key)
                emit(_dumps(key) + ":", child.path, KEY)
                walk(child_value, child)
            emit("}", node.path, STRUCTURAL)
        elif isinstance(value, list):
            emit("[", node.path, STRUCTURAL)
            if value:
                items = _items_node(node)
                for i, item in enumerate(value):
                    if i:
                        emit(",", node.path, STRUCTURAL)
                    walk(item, items)
            emit("]", node.path, STRUCTURAL)
        else:
            emit(_dumps(value), node.path, VALUE)

    walk(document, schema)
    return "".join(parts), tags


# ---------------------------------------------------------------------------
# Token attribution
# ---------------------------------------------------------------------------

@dataclass
class FileTokens:
    schema_overhead: int = 0
    value_payload: int = 0
    null_waste: int = 0

    @property
    def total(self) -> int:
        return self.schema_overhead + self.value_payload + self.null_waste

    def add(self, category: str, n: int = 1):
        if category in OVERHEAD_CATEGORIES:
            self.schema_overhead += n
        elif category == NULL_VALUE:
            self.null_waste += n
        else:
            self.value_payload += n

    def to_dict(self) -> dict:
        return {
            "schema_overhead": self.schema_overhead,
            "value_payload": self.value_payload,
            "null_waste": self.null_waste,
            "total": self.total,
        }


def token_spans(tokenizer, token_ids: list[int], text: str) -> list[tuple[int, int]]:
    """
    Character span [start, end) of each token in `text`.

    Tokenizers exposing decode_single_token_bytes (tiktoken) are measured in
    UTF-8 bytes, so a multi-byte character split across two tokens is covered
    by both. Otherwise each token's length is len(decode([id])).
    """
    spans = []
    decode_bytes = getattr(tokenizer, "decode_single_token_bytes", None)

    if decode_bytes is None:
        pos = 0
        for token_id in token_ids:
            n = len(tokenizer.decode([token_id]))
            spans.append((pos, pos + n))
            pos += n
        return spans

    byte_to_char: list[int] = []
    for i, ch in enumerate(text):
        byte_to_char.extend([i] * len(ch.encode("utf-8", "surrogatepass")))
    n_bytes = len(byte_to_char)

    pos = 0
    for token_id in token_ids:
        n = len(decode_bytes(token_id))
        if n and pos < n_bytes:
            last = min(pos + n, n_bytes) - 1
            spans.append((byte_to_char[pos], byte_to_char[last] + 1))
        else:
            start = byte_to_char[pos] if pos < n_bytes else len(text)
            spans.append((start, start))
        pos += n
    return spans


def attribute_tokens(
    spans: list[tuple[int, int]],
    tags: list[tuple[str, str]],
) -> dict[str, FileTokens]:
    """
    Attribute each token to the (path, category) covering the plurality of its
    characters. Ties go to the pair seen first in the span (lowest character
    offset). A zero-width token goes to the tag at its position.
    """
    result: dict[str, FileTokens] = {}
    if not tags:
        return result
    last = len(tags) - 1

    for start, end in spans:
        votes: dict[tuple[str, str], int] = {}
        for tag in tags[start:end]:
            votes[tag] = votes.get(tag, 0) + 1
        if votes:
            # dicts iterate in insertion order, so max() picks the earliest pair on ties
            path, category = max(votes, key=votes.get)
        else:
            path, category = tags[min(start, last)]

        acc = result.get(path)
        if acc is None:
            acc = result[path] = FileTokens()
        acc.add(category)

    return result


def tokenize_document(document: dict, schema: SchemaNode, tokenizer) -> dict[str, FileTokens]:
    """Per-path token counts for one document."""
    text, tags = serialize(document, schema)
    token_ids = tokenizer.encode(text)
    spans = token_spans(tokenizer, token_ids, text)
    return attribute_tokens(spans, tags)


# ---------------------------------------------------------------------------
# Value collection
# ---------------------------------------------------------------------------

def collect_values(document: dict, schema: SchemaNode) -> dict[str, list]:
    """
    Raw leaf values (strings, numbers, booleans) of one document keyed by
    schema path. Nulls are skipped; array elements are visited one by one
    against the shared "[]" node.
    """
    result: dict[str, list] = {}

    def walk(value, node: SchemaNode):
        if value is None:
            return
        if isinstance(value, dict):
            for key, child_value in value.items():
                walk(child_value, _field_node(node, key))
        elif isinstance(value, list):
            if value:
                items = _items_node(node)
                for item in value:
                    walk(item, items)
        else:
            result.setdefault(node.path, []).append(value)

    walk(document, schema)
    return result


def measure_corpus(
    documents: list,
    schema: SchemaNode,
    tokenizer,
) -> tuple[list[dict[str, FileTokens]], list[dict[str, list]]]:
    """Token maps and value maps for every document, in input order."""
    per_file_tokens = []
    per_file_values = []
    for i, doc in enumerate(documents):
        per_file_tokens.append(tokenize_document(doc, schema, tokenizer))
        per_file_values.append(collect_values(doc, schema))
        if logger.isEnabledFor(logging.DEBUG) and (i + 1) % 500 == 0:
            logger.debug("measured %d/%d documents", i + 1, len(documents))
    return per_file_tokens, per_file_values


def encoding_name(tokenizer) -> Optional[str]:
    """Encoding name reported by a tokenizer object, if it has one."""
    return getattr(tokenizer, "name", None)
