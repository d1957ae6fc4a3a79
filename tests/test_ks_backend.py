import json
import time

import pytest

from nmanager import ks_backend
from nmanager.ks_backend import Backend
from nmanager.utils import HttpStatusError


class FakeResponse:
    def __init__(self, status, payload):
        self.status_code = status
        self.content = json.dumps(payload).encode()

    def close(self):
        pass


def items(*names):
    return {"items": [{"metadata": {"name": name}} for name in names]}


class FakeSession:
    def __init__(self, allowed=None, fail=()):
        self.calls = []
        self.allowed = allowed or {("ns1", "alice"), ("ns2", "bob")}
        self.fail = set(fail)

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        for marker in self.fail:
            if marker in url:
                return FakeResponse(500, {"error": "boom"})
        if url.endswith("/v1alpha1/clusters"):
            return FakeResponse(200, items("host"))
        if url.endswith("/v1beta1/users"):
            return FakeResponse(200, items("alice", "bob"))
        if url.endswith("/api/v1/namespaces"):
            return FakeResponse(200, items("ns1", "ns2"))
        if url.endswith("/subjectaccessreviews"):
            reviewed = []
            for item in kwargs["json"]["items"]:
                spec = item["spec"]
                key = (spec["resourceAttributes"]["namespace"], spec["user"])
                reviewed.append({**item, "status": {"allowed": key in self.allowed}})
            return FakeResponse(201, {"items": reviewed})
        return FakeResponse(404, {})

    def posts(self):
        return [call for call in self.calls if call[0] == "POST"]


def make_backend(session, batch_size=2, interval=60):
    password = "password"
    return Backend("ks.example.com", "admin", password, interval, batch_size, session)


def test_reload_builds_tenant_map():
    backend = make_backend(FakeSession())
    backend.reload()
    assert backend.from_namespace("host", "ns1") == ["alice"]
    assert backend.from_namespace("host", "ns2") == ["bob"]


def test_unknown_cluster_or_namespace_is_none():
    backend = make_backend(FakeSession())
    backend.reload()
    assert backend.from_namespace("member", "ns1") is None
    assert backend.from_namespace("host", "missing") is None


def test_reviews_are_sent_in_batches_with_final_request():
    session = FakeSession()
    make_backend(session, batch_size=2).reload()
    sizes = [len(call[2]["json"]["items"]) for call in session.posts()]
    assert sizes == [2, 2, 0]


def test_review_items_ask_for_receivenotification():
    session = FakeSession()
    make_backend(session, batch_size=10).reload()
    spec = session.posts()[0][2]["json"]["items"][0]["spec"]
    assert spec["resourceAttributes"]["verb"] == "get"
    assert spec["resourceAttributes"]["resource"] == "receivenotification"
    assert spec["resourceAttributes"]["group"] == "notification.kubesphere.io"
    assert spec["user"] == "alice"


def test_request_urls_and_basic_auth():
    session = FakeSession()
    backend = make_backend(session)
    assert backend.list_clusters() == ["host"]
    method, url, kwargs = session.calls[0]
    assert method == "GET"
    assert url == "http://ks.example.com/kapis/cluster.kubesphere.io/v1alpha1/clusters"
    assert kwargs["auth"] == ("admin", "password")


def test_list_namespaces_uses_cluster_path():
    session = FakeSession()
    assert make_backend(session).list_namespaces("host") == ["ns1", "ns2"]
    assert session.calls[0][1] == "http://ks.example.com/clusters/host/api/v1/namespaces"


def test_bearer_token_is_read_from_file(tmp_path, monkeypatch):
    token_file = tmp_path / "token"
    token_file.write_text("token\n")
    monkeypatch.setattr(ks_backend, "TOKEN_FILE", str(token_file))
    session = FakeSession()
    backend = Backend("http://ks.example.com", "", "", 60, 10, session)
    backend.list_users()
    assert session.calls[0][2]["headers"]["Authorization"] == "Bearer token"


def test_list_users_failure_raises():
    backend = make_backend(FakeSession(fail={"/users"}))
    with pytest.raises(HttpStatusError):
        backend.list_users()


def test_failing_cluster_keeps_previous_tenants():
    session = FakeSession()
    backend = make_backend(session)
    backend.reload()
    session.fail = {"/namespaces"}
    backend.reload()
    assert backend.from_namespace("host", "ns1") == ["alice"]


def test_failing_users_leaves_map_unchanged():
    session = FakeSession()
    backend = make_backend(session)
    backend.reload()
    session.fail = {"/users"}
    session.allowed = set()
    backend.reload()
    assert backend.from_namespace("host", "ns2") == ["bob"]


def test_failing_clusters_clears_map():
    session = FakeSession()
    backend = make_backend(session)
    backend.reload()
    session.fail = {"/clusters"}
    backend.reload()
    assert backend.from_namespace("host", "ns1") is None


def test_run_reloads_periodically_until_stopped():
    session = FakeSession(fail={"/clusters"})
    backend = make_backend(session, interval=0.01)
    backend.run()
    deadline = time.monotonic() + 5
    while len(session.calls) < 6 and time.monotonic() < deadline:
        time.sleep(0.01)
    backend.stop()
    count = len(session.calls)
    assert count >= 6
    time.sleep(0.05)
    assert len(session.calls) == count