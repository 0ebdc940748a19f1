import random

import pytest

from tokstat_pricing import ModelPricing
from tokstat_tokens import JsonLexTokenizer


class CharTokenizer:
    """One token per character; token id is the code point."""

    name = "char"

    def encode(self, text):
        return [ord(ch) for ch in text]

    def decode(self, tokens):
        return "".join(chr(t) for t in tokens)


class ByteTokenizer:
    """One token per UTF-8 byte, measured the way tiktoken encodings are."""

    name = "bytes"

    def encode(self, text):
        return list(text.encode("utf-8"))

    def decode_single_token_bytes(self, token):
        return bytes([token])


@pytest.fixture
def lex():
    return JsonLexTokenizer()


@pytest.fixture
def chars():
    return CharTokenizer()


@pytest.fixture
def byte_level():
    return ByteTokenizer()


@pytest.fixture
def pricing():
    return ModelPricing("test-model", "test", 10.0, "approx_json_lex")


@pytest.fixture
def rng():
    return random.Random(1234)
