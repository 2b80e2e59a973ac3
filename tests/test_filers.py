"""
Tests for the Graph sender, the simulated sender, and message composition.
"""

import base64
import json

import httpx
import msal
import pytest

from invoice_mailer.errors import ErrorKind
from invoice_mailer.filers.base import SessionMode
from invoice_mailer.filers.graph_sender import GraphConfig, GraphMailSender
from invoice_mailer.filers.message import (
    DEFAULT_CONTENT_TYPE,
    MessageComposer,
    OutgoingMessage,
    content_type_for,
)
from invoice_mailer.filers.simulated import SimulatedMailSender
from invoice_mailer.logsink import LogLevel, RecordingSink


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

TOKEN = {"access_token": "token-123", "token_type": "Bearer"}


class FakeMsalApp:
    """Stands in for msal.PublicClientApplication."""

    def __init__(self, accounts=None, silent_result=None, interactive_result=None,
                 interactive_error=None, silent_error=None):
        self.accounts = accounts or []
        self.silent_result = silent_result
        self.interactive_result = interactive_result
        self.interactive_error = interactive_error
        self.silent_error = silent_error
        self.silent_calls = 0
        self.interactive_calls = 0

    def get_accounts(self):
        return list(self.accounts)

    def acquire_token_silent(self, scopes, account=None):
        self.silent_calls += 1
        if self.silent_error is not None:
            raise self.silent_error
        return self.silent_result

    def acquire_token_interactive(self, scopes, **kwargs):
        self.interactive_calls += 1
        if self.interactive_error is not None:
            raise self.interactive_error
        return self.interactive_result


class GraphStub:
    """Programmable Graph API backed by httpx.MockTransport."""

    def __init__(self, profile=None, profile_status=200, send_status=202, send_body=None,
                 send_error=None):
        self.profile = profile if profile is not None else {"mail": "me@corp.com"}
        self.profile_status = profile_status
        self.send_status = send_status
        self.send_body = send_body
        self.send_error = send_error
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/me"):
            if isinstance(self.profile, str):
                return httpx.Response(self.profile_status, text=self.profile,
                                      headers={"Content-Type": "text/html"})
            return httpx.Response(self.profile_status, json=self.profile)
        if request.url.path.endswith("/sendMail"):
            if self.send_error is not None:
                raise self.send_error
            if self.send_body is not None:
                return httpx.Response(self.send_status, json=self.send_body)
            return httpx.Response(self.send_status)
        return httpx.Response(404)

    @property
    def send_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/sendMail")]

    def client(self) -> httpx.Client:
        return httpx.Client(
            base_url="https://graph.microsoft.com/v1.0",
            transport=httpx.MockTransport(self.handler),
        )


def _sender(app=None, stub=None, sink=None):
    stub = stub or GraphStub()
    app = app or FakeMsalApp(interactive_result=dict(TOKEN))
    sender = GraphMailSender(
        GraphConfig(tenant_id="tenant", client_id="client"),
        sink=sink or RecordingSink(),
        app=app,
        http_client=stub.client(),
    )
    return sender, app, stub


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

class TestGraphAuthentication:
    def test_silent_without_cache_never_prompts(self):
        sender, app, stub = _sender(app=FakeMsalApp(interactive_result=dict(TOKEN)))
        assert sender.authenticate(prefer_silent=True) is False
        assert app.interactive_calls == 0
        assert sender.session.mode is SessionMode.FAILED
        assert stub.requests == []

    def test_silent_with_cached_account(self):
        app = FakeMsalApp(accounts=[{"username": "me@corp.com"}], silent_result=dict(TOKEN))
        sender, app, _ = _sender(app=app)
        assert sender.authenticate(prefer_silent=True) is True
        assert app.interactive_calls == 0
        assert sender.session.principal_address == "me@corp.com"

    def test_silent_cached_account_rejected(self):
        app = FakeMsalApp(accounts=[{"username": "me@corp.com"}], silent_result=None)
        sender, app, _ = _sender(app=app)
        assert sender.authenticate(prefer_silent=True) is False
        assert app.interactive_calls == 0

    def test_interactive_success_sets_principal(self):
        sender, app, stub = _sender()
        assert sender.authenticate(prefer_silent=False) is True
        assert app.interactive_calls == 1
        assert sender.session.mode is SessionMode.AUTHENTICATED
        assert sender.effective_sender() == "me@corp.com"
        assert stub.requests[0].headers["Authorization"] == "Bearer token-123"

    def test_principal_falls_back_to_upn(self):
        stub = GraphStub(profile={"mail": None, "userPrincipalName": "upn@corp.com"})
        sender, _, _ = _sender(stub=stub)
        assert sender.authenticate() is True
        assert sender.session.principal_address == "upn@corp.com"

    def test_interactive_failure_is_terminal(self):
        app = FakeMsalApp(interactive_result={"error": "access_denied",
                                              "error_description": "User cancelled"})
        sink = RecordingSink()
        sender, app, _ = _sender(app=app, sink=sink)
        assert sender.authenticate(prefer_silent=False) is False
        assert sender.session.mode is SessionMode.FAILED
        assert sender.authenticate(prefer_silent=False) is False
        assert app.interactive_calls == 1
        assert any("User cancelled" in m for m in sink.messages(LogLevel.ERROR))

    def test_interactive_exception_fails(self):
        app = FakeMsalApp(interactive_error=RuntimeError("no browser available"))
        sender, _, _ = _sender(app=app)
        assert sender.authenticate() is False
        assert sender.session.mode is SessionMode.FAILED

    def test_profile_error_fails_authentication(self):
        sender, _, _ = _sender(stub=GraphStub(profile_status=500, profile={"error": {}}))
        assert sender.authenticate() is False
        assert sender.session.mode is SessionMode.FAILED

    def test_silent_acquisition_error_fails(self):
        app = FakeMsalApp(accounts=[{"username": "me@corp.com"}],
                          silent_error=ConnectionError("offline"))
        sink = RecordingSink()
        sender, app, _ = _sender(app=app, sink=sink)
        assert sender.authenticate(prefer_silent=True) is False
        assert sender.session.mode is SessionMode.FAILED
        assert app.interactive_calls == 0
        assert any("offline" in m for m in sink.messages(LogLevel.ERROR))

    def test_unparseable_profile_fails(self):
        sender, _, _ = _sender(stub=GraphStub(profile="<html>Sign in</html>"))
        assert sender.authenticate() is False
        assert sender.session.mode is SessionMode.FAILED

    def test_non_object_profile_fails(self):
        sender, _, _ = _sender(stub=GraphStub(profile=["me@corp.com"]))
        assert sender.authenticate() is False
        assert sender.session.mode is SessionMode.FAILED

    def test_app_construction_error_fails(self, monkeypatch):
        def broken_app(*args, **kwargs):
            raise ValueError("invalid authority")

        monkeypatch.setattr(msal, "PublicClientApplication", broken_app)
        sender = GraphMailSender(
            GraphConfig(tenant_id="tenant", client_id="client"),
            sink=RecordingSink(),
            http_client=GraphStub().client(),
        )
        assert sender.authenticate() is False
        assert sender.session.mode is SessionMode.FAILED


# ---------------------------------------------------------------------------
# Token cache
# ---------------------------------------------------------------------------

CACHED_STATE = {
    "Account": {
        "uid.utid-login.microsoftonline.com-utid": {
            "home_account_id": "uid.utid",
            "environment": "login.microsoftonline.com",
            "realm": "utid",
            "local_account_id": "uid",
            "username": "cached@corp.com",
            "authority_type": "MSSTS",
        }
    }
}


class CacheAwareApp(FakeMsalApp):
    """Records the token cache handed over by the sender and can mark it dirty."""

    def __init__(self, client_id, authority=None, token_cache=None, **kwargs):
        super().__init__(interactive_result=dict(TOKEN))
        self.client_id = client_id
        self.authority = authority
        self.token_cache = token_cache

    def acquire_token_interactive(self, scopes, **kwargs):
        result = super().acquire_token_interactive(scopes, **kwargs)
        self.token_cache.deserialize(json.dumps(CACHED_STATE))
        self.token_cache.has_state_changed = True
        return result


class TestTokenCache:
    def setup_method(self):
        self.apps: list[CacheAwareApp] = []

    def _patch_app(self, monkeypatch):
        def factory(*args, **kwargs):
            app = CacheAwareApp(*args, **kwargs)
            self.apps.append(app)
            return app

        monkeypatch.setattr(msal, "PublicClientApplication", factory)

    def _build(self, cache_path, sink=None):
        return GraphMailSender(
            GraphConfig(tenant_id="tenant", client_id="client", token_cache_path=cache_path),
            sink=sink or RecordingSink(),
            http_client=GraphStub().client(),
        )

    def test_app_created_lazily_with_tenant_authority(self, monkeypatch, tmp_path):
        self._patch_app(monkeypatch)
        sender = self._build(tmp_path / "cache.json")
        assert self.apps == []
        sender.authenticate()
        (app,) = self.apps
        assert app.client_id == "client"
        assert app.authority == "https://login.microsoftonline.com/tenant"

    def test_existing_cache_is_loaded(self, monkeypatch, tmp_path):
        self._patch_app(monkeypatch)
        cache_path = tmp_path / "cache.json"
        cache_path.write_text(json.dumps(CACHED_STATE), encoding="utf-8")
        sender = self._build(cache_path)
        sender.authenticate(prefer_silent=True)
        (app,) = self.apps
        assert "cached@corp.com" in app.token_cache.serialize()

    def test_cache_written_after_sign_in(self, monkeypatch, tmp_path):
        self._patch_app(monkeypatch)
        cache_path = tmp_path / "nested" / "cache.json"
        sender = self._build(cache_path)
        assert sender.authenticate() is True
        saved = json.loads(cache_path.read_text(encoding="utf-8"))
        assert "cached@corp.com" in json.dumps(saved)

    def test_cache_write_failure_only_warns(self, monkeypatch, tmp_path):
        self._patch_app(monkeypatch)
        cache_path = tmp_path / "cache-dir"
        cache_path.mkdir()
        sink = RecordingSink()
        sender = self._build(cache_path, sink=sink)
        assert sender.authenticate() is True
        assert sender.session.mode is SessionMode.AUTHENTICATED
        assert any("Could not persist token cache" in m for m in sink.messages(LogLevel.WARNING))


# ---------------------------------------------------------------------------
# Sender address resolution
# ---------------------------------------------------------------------------

class TestEffectiveSender:
    def setup_method(self):
        self.sender, _, _ = _sender()
        self.sender.authenticate()

    def test_principal_by_default(self):
        assert self.sender.effective_sender() == "me@corp.com"

    def test_session_override_beats_principal(self):
        self.sender.set_sender_override("billing@corp.com")
        assert self.sender.effective_sender() == "billing@corp.com"

    def test_run_override_beats_session_override(self):
        self.sender.set_sender_override("billing@corp.com")
        assert self.sender.effective_sender("ar@corp.com") == "ar@corp.com"

    def test_clearing_session_override(self):
        self.sender.set_sender_override("billing@corp.com")
        self.sender.set_sender_override(None)
        assert self.sender.effective_sender() == "me@corp.com"

    def test_unresolvable_sender_raises(self):
        sender, _, _ = _sender()
        with pytest.raises(ValueError):
            sender.effective_sender()


# ---------------------------------------------------------------------------
# Sending
# ---------------------------------------------------------------------------

class TestGraphSend:
    def _authenticated(self, stub):
        sender, _, _ = _sender(stub=stub)
        assert sender.authenticate()
        return sender

    def test_send_with_pdf_attachment(self, tmp_path):
        stub = GraphStub()
        sender = self._authenticated(stub)
        invoice = tmp_path / "INV100-march.pdf"
        invoice.write_bytes(b"%PDF-1.4 invoice")

        result = sender.send("a@x.com", "Invoice INV100", "Please find attached.", invoice)

        assert result.ok
        (request,) = stub.send_requests
        assert "corp.com" in str(request.url)
        payload = json.loads(request.content)
        message = payload["message"]
        assert payload["saveToSentItems"] is True
        assert message["toRecipients"][0]["emailAddress"]["address"] == "a@x.com"
        assert message["from"]["emailAddress"]["address"] == "me@corp.com"
        attachment = message["attachments"][0]
        assert attachment["name"] == "INV100-march.pdf"
        assert attachment["contentType"] == "application/pdf"
        assert base64.b64decode(attachment["contentBytes"]) == b"%PDF-1.4 invoice"

    def test_send_uses_explicit_sender(self):
        stub = GraphStub()
        sender = self._authenticated(stub)
        sender.send("a@x.com", "Invoice", "Body", sender="shared@corp.com")
        payload = json.loads(stub.send_requests[0].content)
        assert payload["message"]["from"]["emailAddress"]["address"] == "shared@corp.com"

    def test_missing_attachment_sends_without_it(self, tmp_path):
        stub = GraphStub()
        sender = self._authenticated(stub)
        result = sender.send("a@x.com", "Invoice", "Body", tmp_path / "gone.pdf")
        assert result.ok
        assert "attachments" not in json.loads(stub.send_requests[0].content)["message"]

    def test_permission_denied_by_code(self):
        stub = GraphStub(send_status=403, send_body={
            "error": {"code": "ErrorAccessDenied", "message": "Access is denied. Check credentials."}
        })
        sender = self._authenticated(stub)
        result = sender.send("a@x.com", "Invoice", "Body")
        assert not result.ok
        assert result.error_kind is ErrorKind.PERMISSION_DENIED
        assert "administrator" in result.detail

    def test_permission_denied_by_message(self):
        stub = GraphStub(send_status=400, send_body={
            "error": {"code": "BadRequest", "message": "Access is denied for this mailbox"}
        })
        sender = self._authenticated(stub)
        assert sender.send("a@x.com", "Invoice", "Body").error_kind is ErrorKind.PERMISSION_DENIED

    def test_server_error_is_send_failed(self):
        stub = GraphStub(send_status=503, send_body={
            "error": {"code": "ServiceUnavailable", "message": "Try later"}
        })
        sender = self._authenticated(stub)
        result = sender.send("a@x.com", "Invoice", "Body")
        assert result.error_kind is ErrorKind.SEND_FAILED
        assert "503" in result.detail
        assert len(stub.send_requests) == 1

    def test_transport_error_is_send_failed(self):
        stub = GraphStub(send_error=httpx.ConnectError("connection refused"))
        sender = self._authenticated(stub)
        result = sender.send("a@x.com", "Invoice", "Body")
        assert result.error_kind is ErrorKind.SEND_FAILED
        assert "connection refused" in result.detail

    def test_required_fields(self):
        sender = self._authenticated(GraphStub())
        with pytest.raises(ValueError, match="recipient"):
            sender.send("", "Invoice", "Body")
        with pytest.raises(ValueError, match="subject"):
            sender.send("a@x.com", "", "Body")
        with pytest.raises(ValueError, match="body"):
            sender.send("a@x.com", "Invoice", "")

    def test_send_requires_authentication(self):
        sender, _, _ = _sender()
        with pytest.raises(RuntimeError):
            sender.send("a@x.com", "Invoice", "Body")


# ---------------------------------------------------------------------------
# Simulated sender
# ---------------------------------------------------------------------------

class TestSimulatedSender:
    def test_authenticates_silently(self):
        sender = SimulatedMailSender(RecordingSink())
        assert sender.authenticate(prefer_silent=True) is True
        assert sender.effective_sender() == "dry-run@localhost"

    def test_records_deliveries(self, tmp_path):
        invoice = tmp_path / "INV1.pdf"
        invoice.write_bytes(b"x")
        sender = SimulatedMailSender(RecordingSink(), principal="me@corp.com")
        sender.authenticate()
        result = sender.send("a@x.com", "Invoice INV1", "Body", invoice)
        assert result.ok
        (delivery,) = sender.deliveries
        assert delivery.sender == "me@corp.com"
        assert delivery.recipient == "a@x.com"
        assert delivery.attachment_path == invoice

    def test_same_validation_as_live(self):
        sender = SimulatedMailSender(RecordingSink())
        sender.authenticate()
        with pytest.raises(ValueError):
            sender.send("a@x.com", "", "Body")


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class TestMessages:
    def test_content_types(self):
        assert content_type_for("a.PDF") == "application/pdf"
        assert content_type_for("a.xlsx").endswith("spreadsheetml.sheet")
        assert content_type_for("a.jpeg") == "image/jpeg"
        assert content_type_for("a.bin") == DEFAULT_CONTENT_TYPE
        assert content_type_for("noext") == DEFAULT_CONTENT_TYPE

    def test_payload_without_attachment(self):
        msg = OutgoingMessage(to="a@x.com", subject="S", body_text="B", from_address="me@corp.com")
        payload = msg.to_graph_payload(save_to_sent_items=False)
        assert payload["saveToSentItems"] is False
        assert payload["message"]["body"] == {"contentType": "Text", "content": "B"}
        assert "attachments" not in payload["message"]

    def test_default_templates(self):
        composed = MessageComposer().compose(key="INV100")
        assert composed.subject == "Invoice INV100"
        assert "Please find attached invoice INV100." in composed.body

    def test_custom_templates(self):
        composer = MessageComposer(
            subject_template="{{ key }} from ACME",
            body_template="Hello {{ recipient }}, see {{ file_name }}.",
        )
        composed = composer.compose(key="INV1", file_name="INV1.pdf", recipient="a@x.com")
        assert composed.subject == "INV1 from ACME"
        assert composed.body == "Hello a@x.com, see INV1.pdf."
