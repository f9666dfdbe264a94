import json

import httpx
import pytest
from fastapi.testclient import TestClient

from app.config import get_settings
from app.services.runs_service import set_runs_service
from chain.rpc import RpcClient
from fields.validators import set_address_validator
from manifest.types import ChainConfig
from session.idle import reset_idle_renew
from session.store import SessionStore, set_session_store


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Recorder:
    """
    httpx.MockTransport handler that records requests and answers from a route table.

    Routes map "METHOD path" (or just path) to a dict/list (JSON), an
    httpx.Response, an exception instance, or a callable(request) -> Response.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.requests = []

    def calls(self, path=None):
        return [r for r in self.requests if path is None or r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(f"{request.method} {request.url.path}", self.routes.get(request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        if callable(route) and not isinstance(route, (dict, list)):
            return route(request)
        if isinstance(route, Exception):
            raise route
        if isinstance(route, httpx.Response):
            return httpx.Response(route.status_code, headers=route.headers, content=route.content)
        return httpx.Response(200, json=route)


@pytest.fixture(autouse=True)
def _isolate(monkeypatch):
    monkeypatch.delenv("MANIFEST_PATH", raising=False)
    monkeypatch.delenv("CHAIN_CONFIG_PATH", raising=False)
    get_settings.cache_clear()
    set_session_store(None)
    set_runs_service(None)
    reset_idle_renew()
    set_address_validator(None)
    yield
    get_settings.cache_clear()
    set_session_store(None)
    set_runs_service(None)
    reset_idle_renew()
    set_address_validator(None)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_store(clock):
    store = SessionStore(clock=clock)
    set_session_store(store)
    return store


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def rpc(recorder):
    return RpcClient(transport=httpx.MockTransport(recorder))


CHAIN_DOC = {
    "chainId": "canopy-1",
    "displayName": "Canopy",
    "rpc": {"base": "http://rpc.test", "admin": "http://admin.test"},
    "denom": {"base": "ucnpy", "symbol": "CNPY", "decimals": 6},
    "session": {"unlockTimeoutSec": 600},
    "ds": {
        "account": {
            "source": {"base": "rpc", "path": "/v1/query/account"},
            "body": {"address": "{{account.address}}"},
            "coerce": {"body": {}},
        },
        "validators": {
            "source": {"base": "rpc", "path": "/v1/query/validators"},
            "body": {"height": 0},
            "selector": "results",
        },
        "height": {
            "source": {"base": "rpc", "path": "/v1/query/height", "method": "GET"},
            "selector": "height",
        },
    },
    "fees": {
        "denom": "{{chain.denom.base}}",
        "providers": [
            {"type": "static", "data": {"sendFee": 10000, "stakeFee": 20000}},
        ],
        "buckets": {"avg": {"multiplier": 1.0, "default": True}, "fast": {"multiplier": 1.5}},
    },
}


@pytest.fixture
def chain_doc():
    return json.loads(json.dumps(CHAIN_DOC))


@pytest.fixture
def chain(chain_doc):
    return ChainConfig.model_validate(chain_doc)


SEND_ACTION = {
    "id": "send",
    "label": "Send",
    "tags": ["quick"],
    "priority": 10,
    "auth": {"type": "sessionPassword"},
    "submit": {"base": "admin", "path": "/v1/admin/tx-send"},
    "payload": {
        "address": "{{account.address}}",
        "output": "{{form.output}}",
        "amount": {"value": "{{toMicroDenom<{{form.amount}}>}}", "coerce": "int"},
        "fee": {"value": "{{fees.effective}}", "coerce": "int"},
        "password": "{{session.password}}",
    },
    "form": {
        "fields": [
            {"type": "address", "name": "output", "label": "To", "required": True},
            {
                "type": "amount",
                "name": "amount",
                "label": "Amount",
                "required": True,
                "rules": {"gt": 0},
            },
            {"type": "text", "name": "memo", "label": "Memo"},
        ]
    },
    "success": "Sent {{form.amount}} CNPY",
    "notifications": {
        "onSuccess": {"variant": "success", "title": "Sent to {{shortAddress<{{form.output}}>}}"},
        "onError": {"variant": "error", "title": "Send failed"},
    },
}


MANIFEST_DOC = {
    "version": "1",
    "actions": [
        SEND_ACTION,
        {
            "id": "stake",
            "label": "Stake",
            "flow": "wizard",
            "tags": ["quick"],
            "priority": 20,
            "submit": {"base": "admin", "path": "/v1/admin/tx-stake"},
            "steps": [
                {"id": "who", "title": "Validator", "form": {"fields": [
                    {"type": "text", "name": "committees", "required": True},
                ]}},
                {"id": "how", "title": "Amount", "form": {"fields": [
                    {"type": "amount", "name": "amount", "required": True},
                    {"type": "switch", "name": "delegate", "value": "true"},
                ]}},
            ],
            "confirm": {"title": "Confirm stake", "summary": [
                {"label": "Amount", "value": "{{form.amount}}"},
            ]},
        },
        {
            "id": "pause",
            "label": "Pause",
            "auth": {"type": "none"},
            "submit": {"base": "rpc", "path": "/v1/tx/pause"},
            "form": {"fields": [{"type": "text", "name": "reason"}]},
        },
        {
            "id": "internal",
            "hidden": True,
            "tags": ["quick"],
            "submit": {"base": "rpc", "path": "/internal"},
            "form": {"fields": []},
        },
    ],
}


@pytest.fixture
def manifest_doc():
    return json.loads(json.dumps(MANIFEST_DOC))


@pytest.fixture
def send_action_doc():
    return json.loads(json.dumps(SEND_ACTION))


@pytest.fixture
def client():
    from app.main import create_app

    app = create_app()
    with TestClient(app) as client:
        yield client
