import httpx
import pytest

from extensions import build_default_services
from interpreter import RSLRuntimeError


@pytest.fixture
def requests_seen():
    return []


@pytest.fixture
def web_run(run, requests_seen):
    def handler(request):
        requests_seen.append(request)
        if request.url.path == "/missing":
            return httpx.Response(404, text="not here")
        if request.method == "POST":
            return httpx.Response(200, text="echo:" + request.content.decode("utf-8"))
        return httpx.Response(200, text="hello")

    def runner(source):
        services = build_default_services()
        services.config["http_transport"] = httpx.MockTransport(handler)
        return run(source, services=services)

    return runner


def test_get_request(web_run, requests_seen):
    _interp, value = web_run('getRequest("http://example.test/greeting")')
    assert value.value == "hello"
    assert requests_seen[0].method == "GET"


def test_post_request_sends_body(web_run, requests_seen):
    _interp, value = web_run('postRequest("http://example.test/api", "payload")')
    assert value.value == "echo:payload"
    assert requests_seen[0].headers["content-type"].startswith("text/plain")


def test_bearer_token_header(web_run, requests_seen):
    web_run('postRequestWithBearerToken("http://example.test/api", "{}", "s3cret")')
    assert requests_seen[0].headers["authorization"] == "Bearer s3cret"


def test_non_success_status_is_error(web_run):
    with pytest.raises(RSLRuntimeError) as info:
        web_run('getRequest("http://example.test/missing")')
    assert info.value.kind == "http"
    assert "HTTP 404" in info.value.message
    assert "not here" in info.value.message


def test_transport_failure_is_wrapped(run):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    services = build_default_services()
    services.config["http_transport"] = httpx.MockTransport(handler)
    with pytest.raises(RSLRuntimeError) as info:
        run('getRequest("http://example.test/")', services=services)
    assert info.value.kind == "http"
    assert isinstance(info.value.__cause__, httpx.ConnectError)
