import httpx

from finks.health import check_dashboard

URL = "http://localhost:8080/api/overview"


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_reachable():
    client = _client(lambda request: httpx.Response(200, json={"http": {"routers": {"total": 2}}}))
    ok, msg, latency = check_dashboard(URL, client=client)
    assert ok
    assert msg == "Reachable"
    assert latency is not None and latency >= 0


def test_http_error_status():
    ok, msg, _ = check_dashboard(URL, client=_client(lambda request: httpx.Response(404)))
    assert not ok
    assert msg == "HTTP 404"


def test_invalid_json():
    client = _client(lambda request: httpx.Response(200, text="<html>"))
    ok, msg, _ = check_dashboard(URL, client=client)
    assert not ok
    assert msg == "Invalid JSON"


def test_unexpected_payload():
    ok, msg, _ = check_dashboard(URL, client=_client(lambda request: httpx.Response(200, json=[1, 2])))
    assert not ok
    assert msg.startswith("Unexpected payload")


def test_no_response():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    ok, msg, _ = check_dashboard(URL, client=_client(refuse))
    assert not ok
    assert msg == "No response"
