from __future__ import annotations

import json
import uuid

from pathway.services import gemini
from tests.utils.auth import anonymous_headers, build_auth_headers

REPLY = json.dumps(
    [
        {"name": "ETH Zurich", "country": "Switzerland", "category": "reach", "match_score": 71},
        {"name": "TU Delft", "country": "Netherlands", "category": "match", "match_score": 84},
    ]
)


def test_recommend_uses_profile(client, monkeypatch):
    prompts = []

    def _generate(prompt, **kwargs):
        prompts.append(prompt)
        return REPLY

    monkeypatch.setattr(gemini, "generate_content", _generate)
    headers = build_auth_headers(str(uuid.uuid4()), "eng@example.com")
    client.put(
        "/v1/profile",
        json={"preferences": {"intended_major": "Mechanical Engineering"}},
        headers=headers,
    )

    resp = client.post(
        "/v1/recommender/recommend",
        json={"notes": "Europe only", "count": 2, "preferences": {"budget": 20000}},
        headers=headers,
    )
    assert resp.status_code == 200
    names = [u["name"] for u in resp.json()["universities"]]
    assert names == ["ETH Zurich", "TU Delft"]
    assert "Intended major: Mechanical Engineering" in prompts[0]
    assert "Annual budget (USD): 20000" in prompts[0]
    assert "Additional notes: Europe only" in prompts[0]


def test_recommend_anonymous_quota(client, monkeypatch):
    monkeypatch.setattr(gemini, "generate_content", lambda prompt, **kwargs: REPLY)
    headers = anonymous_headers()
    assert client.post("/v1/recommender/recommend", json={}, headers=headers).status_code == 200
    resp = client.post("/v1/recommender/recommend", json={}, headers=headers)
    assert resp.status_code == 402
    assert resp.json()["feature"] == "recommender"


def test_recommend_llm_timeout(client, monkeypatch):
    def _slow(prompt, **kwargs):
        raise TimeoutError("slow")

    monkeypatch.setattr(gemini, "generate_content", _slow)
    resp = client.post("/v1/recommender/recommend", json={}, headers=build_auth_headers())
    assert resp.status_code == 502
    assert resp.json()["detail"]["code"] == "LLM_TIMEOUT"


def test_saved_universities_api(client):
    headers = build_auth_headers(str(uuid.uuid4()))
    resp = client.post(
        "/v1/recommender/saved",
        json={"university_name": "TU Delft", "university_data": {"country": "Netherlands"}},
        headers=headers,
    )
    assert resp.status_code == 201
    saved_id = resp.json()["id"]

    resp = client.get("/v1/recommender/saved", headers=headers)
    assert [s["university_name"] for s in resp.json()] == ["TU Delft"]

    assert client.delete(f"/v1/recommender/saved/{saved_id}", headers=headers).status_code == 204
    assert client.delete(f"/v1/recommender/saved/{saved_id}", headers=headers).status_code == 404
