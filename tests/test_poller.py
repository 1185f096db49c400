import httpx
import pytest
from lenny_listens.errors import PollTimeout
from lenny_listens.services.poller import ResultPoller

def poller(responses, max_attempts=5):
    calls = []

    def handler(request):
        calls.append(request.url.path)
        status, body = responses.pop(0) if responses else (404, {"error": "Perspective not found"})
        return httpx.Response(status, json=body)

    sleeps = []
    p = ResultPoller("http://api.local/", interval=0.5, max_attempts=max_attempts,
                     client=httpx.Client(transport=httpx.MockTransport(handler)), sleep=sleeps.append)
    return p, calls, sleeps

def test_not_found_and_pending_are_both_waited_on():
    p, calls, sleeps = poller([(404, {}), (200, {"status": "pending"}), (200, {"status": "generating"}),
                               (200, {"status": "ready", "preview_url": "https://pv/1"})])
    assert p.wait(conversation_id="c1")["preview_url"] == "https://pv/1"
    assert calls == ["/perspective/c1"] * 4
    assert sleeps == [0.5] * 3

def test_error_record_is_terminal():
    p, _, _ = poller([(200, {"status": "error", "error_message": "boom"})])
    assert p.wait(session_id="s1")["error_message"] == "boom"

def test_latest_names_the_conversation_then_follows_it():
    p, calls, _ = poller([(404, {}), (200, {"conversation_id": "c7", "status": "generating"}),
                          (200, {"conversation_id": "c7", "status": "generating"}),
                          (200, {"conversation_id": "c7", "status": "ready", "preview_url": "https://pv/7"})])
    assert p.wait()["preview_url"] == "https://pv/7"
    assert calls == ["/perspective/latest", "/perspective/latest", "/perspective/c7", "/perspective/c7"]

def test_latest_mode_against_the_app(client_for, strategy):
    api = client_for(strategy, DISPATCH_MODE="background")
    api.post("/webhook", json={"conversation_id": "c1", "fields": {"company_domain": "acme.io"}})
    pending = {"conversation_id": "c1", "status": "generating"}
    responses = iter([httpx.Response(200, json=pending)])

    def handler(request):
        # the first look at /latest sees the record mid-generation; afterwards ask the real app
        if request.url.path == "/perspective/latest":
            return next(responses, httpx.Response(404, json={}))
        served = api.get(request.url.path)
        return httpx.Response(served.status_code, json=served.json())

    p = ResultPoller("http://api.local", interval=0, max_attempts=3,
                     client=httpx.Client(transport=httpx.MockTransport(handler)), sleep=lambda s: None)
    record = p.wait()
    assert record["conversation_id"] == "c1"
    assert record["status"] == "ready"

def test_gives_up_after_max_attempts():
    p, calls, sleeps = poller([], max_attempts=3)
    with pytest.raises(PollTimeout):
        p.wait()
    assert calls == ["/perspective/latest"] * 3
    assert len(sleeps) == 2

def test_server_errors_keep_polling():
    p, _, _ = poller([(500, {}), (200, {"status": "ready"})])
    assert p.wait(conversation_id="c1")["status"] == "ready"
