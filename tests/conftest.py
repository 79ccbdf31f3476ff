"""Shared fixtures: isolated settings and scripted LLM providers."""
import json
from typing import Any, Optional
from unittest.mock import AsyncMock, Mock

import pytest

from dme_orders.config import Settings
from dme_orders.providers.llm.base import LLMResponse, TokenUsage


OXYGEN_NOTE = """Patient Name: Harold Finch
DOB: 04/12/1952
Diagnosis: COPD
Ordering Physician: Dr. Cuddy

Patient requires oxygen tank with 2 L flow rate for sleep and exertion."""

CPAP_NOTE = "Patient needs a CPAP with full face mask and humidifier. AHI > 20. Ordered by Dr. Cameron."


def _make_settings(**overrides) -> Settings:
    """Settings that ignore .env files and carry no credentials unless given."""
    values = {"llm_api_key": ""}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _as_response(item: Any, usage: Optional[TokenUsage]) -> Any:
    if isinstance(item, BaseException):
        return item
    if isinstance(item, (dict, list)):
        item = json.dumps(item)
    return LLMResponse(text=item, model="test-model", usage=usage)


def _make_llm(*responses: Any, usage: Optional[TokenUsage] = None) -> Mock:
    """
    Provider whose generate() returns the given responses in order.

    Dicts are sent as JSON, strings verbatim, exceptions are raised.
    A single exception is raised on every call.
    """
    llm = Mock()
    llm.get_provider_name.return_value = "openai"
    llm.get_model_name.return_value = "test-model"
    if len(responses) == 1 and isinstance(responses[0], BaseException):
        llm.generate = AsyncMock(side_effect=responses[0])
    else:
        llm.generate = AsyncMock(side_effect=[_as_response(r, usage) for r in responses])
    return llm


@pytest.fixture
def settings() -> Settings:
    return _make_settings()


@pytest.fixture
def make_settings():
    return _make_settings


@pytest.fixture
def make_llm():
    return _make_llm


@pytest.fixture
def oxygen_note() -> str:
    return OXYGEN_NOTE


@pytest.fixture
def cpap_note() -> str:
    return CPAP_NOTE
