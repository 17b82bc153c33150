"""Tests for provider body translation."""

from __future__ import annotations

import pytest

from promptline.models.base import CanonicalRequest, Message, ProviderKind
from promptline.models.normalizer import (
    build_provider_body,
    clamp_params,
    flatten_prompt,
    to_anthropic,
    to_google,
    to_local,
    to_openai,
)


@pytest.fixture
def request_():
    return CanonicalRequest(
        model="m",
        system_text="Be brief.",
        messages=(Message("user", "hi"), Message("assistant", "hello")),
        temperature=0.5,
        top_k=40,
        max_output_tokens=256,
        stop_sequences=("END",),
    )


class TestClampParams:
    def test_out_of_range_values(self):
        clamped = clamp_params(CanonicalRequest(model="m", temperature=5, top_p=2))
        assert clamped.temperature == 2
        assert clamped.top_p == 1

    def test_lower_bounds(self):
        clamped = clamp_params(
            CanonicalRequest(model="m", temperature=-1, top_p=-0.5, top_k=0, max_output_tokens=0)
        )
        assert clamped.temperature == 0
        assert clamped.top_p == 0
        assert clamped.top_k == 1
        assert clamped.max_output_tokens == 1

    def test_integers_are_floored(self):
        clamped = clamp_params(CanonicalRequest(model="m", top_k=5.9, max_output_tokens=99.9))
        assert clamped.top_k == 5
        assert clamped.max_output_tokens == 99

    def test_unset_fields_stay_unset(self):
        clamped = clamp_params(CanonicalRequest(model="m"))
        assert clamped.temperature is None
        assert clamped.top_p is None
        assert clamped.top_k is None


class TestCanonicalRequest:
    def test_accepts_message_dicts(self):
        request = CanonicalRequest(model="m", messages=[{"role": "user", "content": "x"}])
        assert request.messages == (Message("user", "x"),)


class TestOpenAI:
    def test_shape(self, request_):
        body = to_openai(request_)
        assert body["model"] == "m"
        assert body["stream"] is True
        assert body["messages"][0] == {"role": "system", "content": "Be brief."}
        assert body["messages"][1] == {"role": "user", "content": "hi"}
        assert body["max_tokens"] == 256
        assert "top_p" not in body
        assert "response_format" not in body

    def test_json_mode(self):
        body = to_openai(CanonicalRequest(model="m", json_mode=True))
        assert body["response_format"] == {"type": "json_object"}


class TestAnthropic:
    def test_shape(self, request_):
        body = to_anthropic(request_)
        assert body["system"] == "Be brief."
        assert [m["role"] for m in body["messages"]] == ["user", "assistant"]
        assert body["top_k"] == 40
        assert body["max_output_tokens"] == 256
        assert body["stop_sequences"] == ["END"]
        assert body["stream"] is True

    def test_system_role_filtered(self):
        request = CanonicalRequest(
            model="m",
            messages=(Message("system", "rules"), Message("user", "hi")),
        )
        body = to_anthropic(request)
        assert body["messages"] == [{"role": "user", "content": "hi"}]
        assert "system" not in body


class TestGoogle:
    def test_shape(self, request_):
        body = to_google(request_)
        assert body["contents"][0] == {"role": "user", "parts": [{"text": "hi"}]}
        assert body["systemInstruction"] == {"role": "system", "parts": [{"text": "Be brief."}]}
        config = body["generationConfig"]
        assert config["temperature"] == 0.5
        assert config["topK"] == 40
        assert config["maxOutputTokens"] == 256
        assert config["stopSequences"] == ["END"]
        assert config["responseMimeType"] == "text/plain"
        assert "topP" not in config

    def test_json_mode_mime(self):
        body = to_google(CanonicalRequest(model="m", json_mode=True))
        assert body["generationConfig"]["responseMimeType"] == "application/json"
        assert "systemInstruction" not in body


class TestLocal:
    def test_flatten_prompt(self, request_):
        assert flatten_prompt(request_) == "System:\nBe brief.\n\nUSER: hi\nASSISTANT: hello"

    def test_flatten_without_system(self):
        request = CanonicalRequest(model="m", messages=(Message("user", "hi"),))
        assert flatten_prompt(request) == "USER: hi"

    def test_shape(self, request_):
        body = to_local(request_)
        assert body["stream"] is True
        assert body["options"] == {
            "temperature": 0.5,
            "top_k": 40,
            "num_predict": 256,
            "stop": ["END"],
        }
        assert "format" not in body

    def test_json_mode(self):
        assert to_local(CanonicalRequest(model="m", json_mode=True))["format"] == "json"


class TestBuildProviderBody:
    def test_dispatch_by_kind(self, request_):
        assert "contents" in build_provider_body(ProviderKind.GOOGLE, request_)
        assert "prompt" in build_provider_body(ProviderKind.LOCAL, request_)

    def test_alias_and_clamping(self):
        body = build_provider_body("gemini", CanonicalRequest(model="m", temperature=9))
        assert body["generationConfig"]["temperature"] == 2

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown provider"):
            build_provider_body("mystery", CanonicalRequest(model="m"))
