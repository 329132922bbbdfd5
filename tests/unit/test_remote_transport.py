"""Unit tests for the remote-service transport against a mocked helper."""

import httpx
import pytest

from appctl.transports.remote import RemoteServiceTransport


class FakeHelper:
    """In-process stand-in for the privileged helper's HTTP surface."""

    def __init__(self):
        self.running = True
        self.granted = True
        self.grant_on_request = False
        self.executed = []
        self.exec_response = {"exit_code": 0, "output": "ok"}
        self.exec_status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if not self.running:
            raise httpx.ConnectError("connection refused", request=request)
        path = request.url.path
        if path == "/ping":
            return httpx.Response(200, json={"ok": True})
        if path == "/permission" and request.method == "GET":
            return httpx.Response(200, json={"granted": self.granted})
        if path == "/permission/request":
            self.granted = self.granted or self.grant_on_request
            return httpx.Response(200, json={"granted": self.granted})
        if path == "/exec":
            if not self.granted:
                return httpx.Response(403, json={"error": "denied"})
            self.executed.append(request.read().decode())
            if self.exec_status != 200:
                return httpx.Response(self.exec_status, text="boom")
            return httpx.Response(200, json=self.exec_response)
        return httpx.Response(404)


@pytest.fixture
def helper():
    return FakeHelper()


@pytest.fixture
def transport(helper):
    client = httpx.Client(base_url="http://helper", transport=httpx.MockTransport(helper))
    t = RemoteServiceTransport(client=client, timeout_s=5)
    yield t
    t.close()


class TestAvailability:
    """Unreachable and denied are reported separately."""

    def test_granted(self, transport):
        assert transport.ping()
        assert transport.is_granted()
        assert transport.availability_error() is None

    def test_unreachable(self, transport, helper):
        helper.running = False
        assert not transport.is_granted()
        assert transport.availability_error().kind == "transport_unavailable"

    def test_permission_revoked(self, transport, helper):
        helper.granted = False
        assert not transport.is_granted()
        assert transport.availability_error().kind == "transport_denied"

    def test_request_access_prompts(self, transport, helper):
        helper.granted = False
        helper.grant_on_request = True
        assert transport.request_access()
        assert transport.is_granted()

    def test_request_access_refused(self, transport, helper):
        helper.granted = False
        assert not transport.request_access()


class TestExecution:
    def test_success(self, transport, helper):
        result = transport.execute("am force-stop com.example.alpha")
        assert result.ok
        assert result.output == "ok"
        assert "am force-stop com.example.alpha" in helper.executed[0]

    def test_policy_enforced_before_sending(self, transport, helper):
        result = transport.execute("reboot")
        assert result.error_kind == "policy_rejected"
        assert helper.executed == []

    def test_non_zero_exit(self, transport, helper):
        helper.exec_response = {"exit_code": 1, "output": "Failure [not installed]"}
        result = transport.execute("pm enable com.example.alpha")
        assert result.error_kind == "execution_failed"
        assert result.error_message == "Failure [not installed]"

    def test_error_prefixed_output(self, transport, helper):
        helper.exec_response = {"exit_code": 0, "output": "ERROR: SecurityException"}
        result = transport.execute("pm enable com.example.alpha")
        assert result.error_kind == "execution_failed"
        assert result.error_message == "SecurityException"

    def test_revoked_mid_session(self, transport, helper):
        helper.granted = False
        result = transport.execute("am force-stop com.example.alpha")
        assert result.error_kind == "transport_denied"

    def test_channel_down(self, transport, helper):
        helper.running = False
        result = transport.execute("am force-stop com.example.alpha")
        assert result.error_kind == "transport_unavailable"

    def test_server_error(self, transport, helper):
        helper.exec_status = 500
        result = transport.execute("am force-stop com.example.alpha")
        assert result.error_kind == "execution_failed"

    def test_timeout(self, helper):
        def slow(request):
            if request.url.path == "/exec":
                raise httpx.ReadTimeout("timed out", request=request)
            return helper(request)

        client = httpx.Client(base_url="http://helper", transport=httpx.MockTransport(slow))
        t = RemoteServiceTransport(client=client)
        result = t.execute("am force-stop com.example.alpha")
        assert result.error_kind == "timeout"
        t.close()

    def test_connect_timeout_is_unreachable(self, helper):
        def stalled(request):
            if request.url.path == "/exec":
                raise httpx.ConnectTimeout("connect timed out", request=request)
            return helper(request)

        client = httpx.Client(base_url="http://helper", transport=httpx.MockTransport(stalled))
        t = RemoteServiceTransport(client=client)
        result = t.execute("am force-stop com.example.alpha")
        assert result.error_kind == "transport_unavailable"
        t.close()

    @pytest.mark.parametrize("body", [[], None, "ok", 1])
    def test_malformed_response(self, transport, helper, body):
        helper.exec_response = body
        result = transport.execute("am force-stop com.example.alpha")
        assert result.error_kind == "execution_failed"
