import asyncio

import pytest
from unittest.mock import patch, MagicMock

from conftest import FakeTransport
from writerkit.ai.accountant import TokenAccountant
from writerkit.core.tokenizer import TokenCounter, count_words


class TestCountWords:
    def test_whitespace_runs(self):
        assert count_words("  one\ttwo\n\nthree  ") == 3

    def test_empty(self):
        assert count_words("") == 0
        assert count_words("   \n") == 0


class TestTokenCounter:
    def test_initialization_with_encoding(self):
        with patch('writerkit.core.tokenizer.tiktoken') as mock_tiktoken:
            mock_encoder = MagicMock()
            mock_tiktoken.get_encoding.return_value = mock_encoder

            counter = TokenCounter()

            assert counter.is_available is True
            assert counter.encoder == mock_encoder
            mock_tiktoken.get_encoding.assert_called_once_with("cl100k_base")

    def test_model_specific_encoding(self):
        with patch('writerkit.core.tokenizer.tiktoken') as mock_tiktoken:
            counter = TokenCounter(model="gpt-4o")

            mock_tiktoken.encoding_for_model.assert_called_once_with("gpt-4o")
            assert counter.encoder == mock_tiktoken.encoding_for_model.return_value

    def test_unknown_model_falls_back_to_encoding(self):
        with patch('writerkit.core.tokenizer.tiktoken') as mock_tiktoken:
            mock_tiktoken.encoding_for_model.side_effect = KeyError("unknown")

            TokenCounter("gpt2", model="mystery-model")

            mock_tiktoken.get_encoding.assert_called_once_with("gpt2")

    def test_encoder_load_failure(self):
        with patch('writerkit.core.tokenizer.tiktoken') as mock_tiktoken:
            mock_tiktoken.get_encoding.side_effect = OSError("offline")

            counter = TokenCounter()

            assert counter.is_available is False
            assert counter.count("hello world") == 0

    def test_count_with_encoder(self):
        with patch('writerkit.core.tokenizer.tiktoken') as mock_tiktoken:
            mock_encoder = MagicMock()
            mock_encoder.encode.return_value = [1, 2, 3, 4, 5]
            mock_tiktoken.get_encoding.return_value = mock_encoder

            counter = TokenCounter()

            assert counter.count("test text") == 5
            mock_encoder.encode.assert_called_once_with("test text")

    def test_count_error_returns_zero(self):
        with patch('writerkit.core.tokenizer.tiktoken') as mock_tiktoken:
            mock_encoder = MagicMock()
            mock_encoder.encode.side_effect = ValueError("bad text")
            mock_tiktoken.get_encoding.return_value = mock_encoder

            assert TokenCounter().count("x") == 0

    def test_count_batch(self):
        with patch('writerkit.core.tokenizer.tiktoken') as mock_tiktoken:
            mock_encoder = MagicMock()
            mock_encoder.encode.side_effect = lambda text: text.split()
            mock_tiktoken.get_encoding.return_value = mock_encoder

            counts = TokenCounter().count_batch({"a": "one two", "b": "three"})

            assert counts == {"a": 2, "b": 1}


class TestTokenAccountant:
    def test_counts_through_transport(self):
        transport = FakeTransport()
        transport.token_count = 1234

        assert asyncio.run(TokenAccountant(transport).count_tokens("text")) == 1234
        assert transport.calls["count_tokens"] == 1

    def test_empty_text_skips_transport(self):
        transport = FakeTransport()

        assert asyncio.run(TokenAccountant(transport).count_tokens("")) == 0
        assert transport.calls["count_tokens"] == 0

    def test_failure_returns_zero(self):
        transport = FakeTransport()
        transport.fail_count = ConnectionError("connection refused")

        assert asyncio.run(TokenAccountant(transport).count_tokens("text")) == 0

    def test_unsupported_counting_returns_zero(self):
        transport = FakeTransport()
        transport.capabilities.supports_token_counting = False

        assert asyncio.run(TokenAccountant(transport).count_tokens("text")) == 0
        assert transport.calls["count_tokens"] == 0
