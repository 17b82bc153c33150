"""Shared test fixtures for promptline."""

from __future__ import annotations

import pytest

from promptline.config import Config, ModelConfig
from promptline.models.base import ProviderKind


@pytest.fixture
def config() -> Config:
    return Config()


@pytest.fixture
def openai_model() -> ModelConfig:
    return ModelConfig(
        provider=ProviderKind.OPENAI,
        model="gpt-4o",
        base_url="https://api.test/v1",
        api_key="test-key",
        context_window=1000,
    )
