from typing import Any, Dict, List

import httpx
import pytest

from itinerary_engine.errors import ScorerUnavailableError
from itinerary_engine.schemas import Destination
from itinerary_engine.tools.relevance_scorer import HttpRelevanceScorer, NeutralScorer, StaticScorer


class DummyResponse:
    def __init__(self, payload):
        self._payload = payload

    def raise_for_status(self):
        return None

    def json(self):
        return self._payload


class DummyClient:
    def __init__(self, response_payload, *args, **kwargs):
        self.response_payload = response_payload
        self.requests: List[tuple] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return None

    def post(self, url, json, headers=None):
        self.requests.append((url, json, headers))
        if isinstance(self.response_payload, Exception):
            raise self.response_payload
        return DummyResponse(self.response_payload)


def _destinations() -> List[Destination]:
    return [
        Destination(id="tanah-lot", name="Tanah Lot", category="temple", location="Bali", duration=90, rating=4.6),
        Destination(id="ubud-market", name="Ubud Market", category="shopping", location="Ubud, Bali", duration=60),
    ]


def _install(monkeypatch, payload: Any) -> Dict[str, DummyClient]:
    created: Dict[str, DummyClient] = {}

    def factory(*args, **kwargs):
        created["client"] = DummyClient(payload, *args, **kwargs)
        return created["client"]

    monkeypatch.setattr(httpx, "Client", factory)
    return created


def test_http_scorer_reads_mapping_payload(monkeypatch):
    created = _install(monkeypatch, {"scores": {"tanah-lot": 0.8, "ubud-market": 1.7, "unknown": 0.1}})
    scorer = HttpRelevanceScorer("https://scores.example/api", api_key="secret")

    scores = scorer.score("user-1", _destinations())

    assert scores == {"tanah-lot": 0.8, "ubud-market": 1.0}
    url, body, headers = created["client"].requests[0]
    assert url == "https://scores.example/api"
    assert body["user_id"] == "user-1"
    assert [item["id"] for item in body["items"]] == ["tanah-lot", "ubud-market"]
    assert headers == {"Authorization": "Bearer secret"}


def test_http_scorer_reads_list_payload_and_fills_missing(monkeypatch):
    _install(monkeypatch, {"scores": [{"id": "tanah-lot", "score": 0.3}, {"bogus": True}]})

    scores = HttpRelevanceScorer("https://scores.example/api").score("user-1", _destinations())

    assert scores == {"tanah-lot": 0.3, "ubud-market": 0.5}


@pytest.mark.parametrize(
    "payload",
    [
        httpx.ConnectError("connection refused"),
        {"unexpected": []},
        {"scores": {"tanah-lot": "high"}},
        ["not", "an", "object"],
    ],
)
def test_http_scorer_failures_raise_unavailable(monkeypatch, payload):
    _install(monkeypatch, payload)

    with pytest.raises(ScorerUnavailableError):
        HttpRelevanceScorer("https://scores.example/api").score("user-1", _destinations())


def test_http_scorer_skips_request_for_empty_pool(monkeypatch):
    created = _install(monkeypatch, {"scores": {}})

    assert HttpRelevanceScorer("https://scores.example/api").score("user-1", []) == {}
    assert created == {}


def test_static_and_neutral_scorers():
    pool = _destinations()

    assert NeutralScorer().score("u", pool) == {"tanah-lot": 0.5, "ubud-market": 0.5}
    assert StaticScorer({"tanah-lot": 0.9}, default=0.2).score("u", pool) == {"tanah-lot": 0.9, "ubud-market": 0.2}
