"""Pytest configuration.

Puts the shared layer on sys.path the way the Lambda runtime does
(/opt/python) and loads each function's handler.py under its own
module name, since every function uses the same file name.
"""

import importlib.util
import json
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from unittest.mock import MagicMock

import httpx
import pytest

LAMBDA_ROOT = Path(__file__).resolve().parent.parent
LAYER_PATH = LAMBDA_ROOT / "layers" / "common" / "python"
FUNCTIONS_PATH = LAMBDA_ROOT / "functions"


def _prepend_sys_path(path: Path) -> None:
    resolved = str(path.resolve())
    if resolved not in sys.path:
        sys.path.insert(0, resolved)


_prepend_sys_path(LAYER_PATH)

# Read at import time by the layer and by powertools
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key")
os.environ.setdefault("POWERTOOLS_SERVICE_NAME", "expense-claims-test")
os.environ.setdefault("POWERTOOLS_METRICS_NAMESPACE", "ExpenseClaimsTest")
os.environ.setdefault("POWERTOOLS_TRACE_DISABLED", "1")
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-2")

from utils import supabase_client  # noqa: E402
from utils.supabase_client import SupabaseClient  # noqa: E402

_loaded_handlers: dict = {}


def load_handler(function_name: str):
    """Import lambda/functions/<function_name>/handler.py once."""
    if function_name not in _loaded_handlers:
        path = FUNCTIONS_PATH / function_name / "handler.py"
        spec = importlib.util.spec_from_file_location(f"{function_name}_handler", path)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        _loaded_handlers[function_name] = module
    return _loaded_handlers[function_name]


@dataclass
class FakeLambdaContext:
    function_name: str = "expense-claims-test"
    memory_limit_in_mb: int = 256
    invoked_function_arn: str = "arn:aws:lambda:eu-west-2:123456789012:function:expense-claims-test"
    aws_request_id: str = "52fdfc07-2182-154f-163f-5f0f9a621d72"


@pytest.fixture
def lambda_context():
    return FakeLambdaContext()


@pytest.fixture(autouse=True)
def reset_supabase_config(monkeypatch):
    """Drop the cached Supabase config between tests."""
    monkeypatch.setattr(supabase_client, "_config", None)


@pytest.fixture
def supabase():
    """A SupabaseClient double; configure return values per test."""
    return MagicMock(spec=SupabaseClient)


def mock_http(handler) -> httpx.Client:
    """httpx client whose requests are answered by handler(request)."""
    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture
def http_factory():
    return mock_http


def api_event(body=None, method="POST", headers=None, path_parameters=None) -> dict:
    """Minimal API Gateway (REST) proxy event."""
    return {
        "httpMethod": method,
        "headers": headers or {},
        "pathParameters": path_parameters,
        "body": json.dumps(body) if body is not None else None,
    }


def response_body(response: dict) -> dict:
    return json.loads(response["body"]) if response.get("body") else {}
