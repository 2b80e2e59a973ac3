"""
Microsoft Graph sender — authenticates the signed-in user with MSAL and
sends invoice emails through the Graph ``sendMail`` endpoint.

API docs: https://learn.microsoft.com/graph/api/user-sendmail
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote

import httpx
import msal

from invoice_mailer.errors import ErrorKind
from invoice_mailer.filers.base import MailSender, SendResult
from invoice_mailer.filers.message import FileAttachment, OutgoingMessage
from invoice_mailer.logsink import LogSink


GRAPH_API_BASE = "https://graph.microsoft.com/v1.0"
DEFAULT_SCOPES = ["User.Read", "Mail.Send"]

# Graph error codes that mean the app or user lacks the right to send
PERMISSION_ERROR_CODES = {
    "ErrorAccessDenied",
    "Authorization_RequestDenied",
    "ErrorSendAsDenied",
    "AccessDenied",
}


@dataclass
class GraphConfig:
    """Azure AD application registration and Graph endpoint settings."""

    tenant_id: str = ""
    client_id: str = ""
    scopes: list[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    token_cache_path: Optional[Path] = None
    base_url: str = GRAPH_API_BASE
    timeout: float = 30.0

    @property
    def authority(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id or 'common'}"


class GraphMailSender(MailSender):
    """
    Live sender backed by Microsoft Graph.

    Usage:
        with GraphMailSender(GraphConfig(tenant_id="...", client_id="...")) as sender:
            if sender.authenticate(prefer_silent=False):
                result = sender.send("a@x.com", "Invoice INV100", "...", "invoices/INV100.pdf")
    """

    def __init__(
        self,
        config: GraphConfig,
        sink: Optional[LogSink] = None,
        app: Any = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        super().__init__(sink)
        self.config = config
        self._app = app
        self._cache: Optional[msal.SerializableTokenCache] = None
        self._access_token: Optional[str] = None
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            base_url=config.base_url,
            timeout=config.timeout,
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    # ---- Authentication ----

    def _acquire_principal(self, prefer_silent: bool) -> Optional[str]:
        app = self._get_app()

        if prefer_silent:
            self.sink.info("Attempting silent authentication from the token cache...")
            result = self._acquire_silent(app)
            if result is None:
                self.sink.warning("No cached credential is usable; silent authentication failed.")
                return None
        else:
            self.sink.info("Authenticating user... (a browser window may open for you to sign in)")
            try:
                result = app.acquire_token_interactive(
                    scopes=self.config.scopes,
                    prompt="select_account",
                )
            except Exception as e:
                # MSAL surfaces browser and loopback-server problems as plain exceptions
                self.sink.error(f"Interactive authentication failed: {e}")
                return None

        if not result or "access_token" not in result:
            error = (result or {}).get("error_description") or (result or {}).get("error", "Unknown error")
            self.sink.error(f"Authentication failed: {error}")
            return None

        self._access_token = result["access_token"]
        self._save_cache()
        return self._fetch_principal_address()

    def _acquire_silent(self, app: Any) -> Optional[dict[str, Any]]:
        for account in app.get_accounts():
            result = app.acquire_token_silent(self.config.scopes, account=account)
            if result and "access_token" in result:
                return result
        return None

    def _fetch_principal_address(self) -> Optional[str]:
        try:
            resp = self._client.get("/me", headers=self._auth_headers())
        except httpx.HTTPError as e:
            self.sink.error(f"Could not read the signed-in user's profile: {e}")
            return None
        if resp.status_code != 200:
            self.sink.error(
                f"Could not read the signed-in user's profile: HTTP {resp.status_code}"
            )
            return None
        try:
            profile = resp.json()
        except ValueError:
            self.sink.error("Could not read the signed-in user's profile: response is not JSON")
            return None
        if not isinstance(profile, dict):
            self.sink.error("Could not read the signed-in user's profile: unexpected response shape")
            return None
        address = profile.get("mail") or profile.get("userPrincipalName")
        if not address:
            self.sink.error("The signed-in user's profile has no email address.")
        return address or None

    def _get_app(self) -> Any:
        if self._app is None:
            self._cache = self._load_cache()
            self._app = msal.PublicClientApplication(
                self.config.client_id,
                authority=self.config.authority,
                token_cache=self._cache,
            )
        return self._app

    def _load_cache(self) -> msal.SerializableTokenCache:
        cache = msal.SerializableTokenCache()
        path = self.config.token_cache_path
        if path and Path(path).exists():
            cache.deserialize(Path(path).read_text(encoding="utf-8"))
        return cache

    def _save_cache(self) -> None:
        path = self.config.token_cache_path
        if self._cache is None or not path or not self._cache.has_state_changed:
            return
        try:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            Path(path).write_text(self._cache.serialize(), encoding="utf-8")
        except OSError as e:
            self.sink.warning(f"Could not persist token cache to {path}: {e}")

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}"}

    # ---- Sending ----

    def _transmit(
        self,
        recipient: str,
        subject: str,
        body: str,
        attachment_path: Optional[Path],
        sender: str,
    ) -> SendResult:
        attachment = None
        if attachment_path is not None:
            if attachment_path.exists():
                try:
                    attachment = FileAttachment.from_path(attachment_path)
                except OSError as e:
                    return SendResult.failure(
                        ErrorKind.SEND_FAILED, f"Could not read attachment {attachment_path}: {e}"
                    )
            else:
                self.sink.warning(f"Attachment file not found: {attachment_path}")

        message = OutgoingMessage(
            to=recipient,
            subject=subject,
            body_text=body,
            from_address=sender,
            attachment=attachment,
        )

        try:
            resp = self._client.post(
                f"/users/{quote(sender)}/sendMail",
                json=message.to_graph_payload(),
                headers=self._auth_headers(),
            )
        except httpx.HTTPError as e:
            return SendResult.failure(ErrorKind.SEND_FAILED, f"Graph request failed: {e}")

        if resp.is_success:
            return SendResult.sent(f"accepted by Graph (HTTP {resp.status_code})")
        return self._classify_error(resp, sender)

    def _classify_error(self, resp: httpx.Response, sender: str) -> SendResult:
        code, message = _graph_error(resp)
        if (
            resp.status_code in (401, 403)
            or code in PERMISSION_ERROR_CODES
            or "access is denied" in message.lower()
        ):
            return SendResult.failure(
                ErrorKind.PERMISSION_DENIED,
                f"The application doesn't have permission to send mail as {sender}. "
                "Please ask your Azure AD administrator to grant the application the "
                f"Mail.Send permission. (Graph: {code or resp.status_code} {message})".rstrip(),
            )
        return SendResult.failure(
            ErrorKind.SEND_FAILED,
            f"Graph API returned HTTP {resp.status_code}: {code} {message}".rstrip(),
        )


def _graph_error(resp: httpx.Response) -> tuple[str, str]:
    """Extract ``(code, message)`` from a Graph error response body."""
    try:
        data = resp.json()
    except ValueError:
        return "", resp.text[:200]
    error = data.get("error", {}) if isinstance(data, dict) else {}
    if not isinstance(error, dict):
        return "", str(error)
    return str(error.get("code", "")), str(error.get("message", ""))
