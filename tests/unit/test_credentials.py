"""
Unit tests for cernsso.transport credential handling.

Tests ticket cache discovery, krb5.conf parsing, request signing and
the Negotiate authentication flow.
"""

import base64
import os
import tempfile

import httpx
import pytest

from cernsso.core.exceptions import CredentialError
from cernsso.transport.cookie_jar import SessionCookieJar
from cernsso.transport.gssapi_wrapper import (
    DEFAULT_KRB5_CONFIG,
    KerberosAuth,
    KerberosCredential,
    apply_krb5_config,
    cache_path,
    gssapi_available,
    hostbased_name,
    load_krb5_config,
    parse_krb5_config,
)
from cernsso.transport.negotiate import NegotiateAuth, is_negotiate_challenge, service_principal
from tests.conftest import FakeSSOServer, require_negotiate


KRB5_CONF = """
# CERN Kerberos configuration
include /etc/krb5.conf.d/crypto-policies
includedir /etc/krb5.conf.d/

[libdefaults]
    default_realm = CERN.CH
    ticket_lifetime = 25h
    rdns = false

[realms]
    CERN.CH = {
        default_domain = cern.ch
        kdc = cerndc.cern.ch
        kdc = cerndc2.cern.ch
    }

[domain_realm]
    .cern.ch = CERN.CH

[plugins]
    module frobnicate:/usr/lib/frob.so
    this line is garbage
"""


class TestCachePath:
    """Tests for ticket cache discovery."""

    def test_env_file_prefix_stripped(self):
        """Test FILE: is stripped from KRB5CCNAME."""
        assert cache_path({"KRB5CCNAME": "FILE:/tmp/krb5cc_1000"}) == "/tmp/krb5cc_1000"

    def test_env_plain_path(self):
        """Test a plain KRB5CCNAME path is used as is."""
        assert cache_path({"KRB5CCNAME": "/var/tmp/cc"}) == "/var/tmp/cc"

    def test_env_typed_cache_kept(self):
        """Test non-file cache types are returned unchanged."""
        assert cache_path({"KRB5CCNAME": "KEYRING:persistent:1000"}) == "KEYRING:persistent:1000"

    def test_default_per_user(self):
        """Test the per-user default location."""
        path = cache_path({})
        assert os.path.dirname(path) == tempfile.gettempdir()
        assert os.path.basename(path).startswith("krb5cc_")


class TestKrb5Config:
    """Tests for the tolerant krb5.conf reader."""

    def test_sections_parsed(self):
        """Test relations and subsections are read."""
        config = parse_krb5_config(KRB5_CONF)
        assert config.default_realm == "CERN.CH"
        assert config.realms == ("CERN.CH",)
        assert config.sections["realms"]["CERN.CH"]["kdc"] == ["cerndc.cern.ch", "cerndc2.cern.ch"]

    def test_unsupported_directives_ignored(self):
        """Test unsupported or unparseable lines are skipped, not fatal."""
        config = parse_krb5_config(KRB5_CONF)
        assert len(config.ignored) == 4
        assert any(line.startswith("includedir") for line in config.ignored)
        assert "this line is garbage" in config.ignored

    def test_ignored_directives_logged(self, capture_logs):
        """Test each skipped directive is logged."""
        parse_krb5_config("include /x\n[libdefaults]\n default_realm = CERN.CH\n")
        events = [e["event"] for e in capture_logs]
        assert "krb5_config_directive_ignored" in events

    def test_missing_file_is_empty(self, tmp_path):
        """Test a missing configuration file yields an empty config."""
        config = load_krb5_config(str(tmp_path / "absent.conf"))
        assert config.sections == {}
        assert config.default_realm is None

    def test_env_location(self, tmp_path):
        """Test KRB5_CONFIG selects the file."""
        conf = tmp_path / "krb5.conf"
        conf.write_text(KRB5_CONF)
        config = load_krb5_config(environ={"KRB5_CONFIG": str(conf)})
        assert config.path == str(conf)
        assert config.default_realm == "CERN.CH"

    def test_unreadable_file(self, tmp_path):
        """Test an unreadable configuration fails with CredentialError."""
        with pytest.raises(CredentialError):
            load_krb5_config(str(tmp_path))

    def test_apply_exports_path(self, capture_logs):
        """Test applying a configuration sets KRB5_CONFIG once."""
        env = {"KRB5_CONFIG": "/etc/krb5.conf"}
        config = parse_krb5_config(KRB5_CONF, path="/afs/cern.ch/krb5.conf")

        apply_krb5_config(config, environ=env)
        apply_krb5_config(config, environ=env)

        assert env["KRB5_CONFIG"] == "/afs/cern.ch/krb5.conf"
        events = [e["event"] for e in capture_logs]
        assert events.count("krb5_config_applied") == 1


class TestSigning:
    """Tests for request signing."""

    def test_hostbased_name(self):
        """Test service principal conversion to host-based form."""
        assert hostbased_name("HTTP/auth.cern.ch") == "HTTP@auth.cern.ch"
        assert hostbased_name("HTTP@auth.cern.ch") == "HTTP@auth.cern.ch"

    def test_hostbased_name_invalid(self):
        """Test malformed principals are rejected."""
        with pytest.raises(ValueError):
            hostbased_name("auth.cern.ch")

    def test_sign_sets_negotiate_header(self, credential):
        """Test sign attaches the base64 token."""
        request = httpx.Request("GET", "https://auth.cern.ch/")
        credential.sign(request, "HTTP/auth.cern.ch")

        expected = "Negotiate " + base64.b64encode(b"token").decode("ascii")
        assert request.headers["Authorization"] == expected
        assert credential.principals == ["HTTP/auth.cern.ch"]

    def test_sign_after_release_fails(self, credential):
        """Test a released provider refuses to sign."""
        credential.release()
        credential.release()
        assert credential.released

        with pytest.raises(CredentialError):
            credential.sign(httpx.Request("GET", "https://auth.cern.ch/"), "HTTP/auth.cern.ch")

    def test_kerberos_credential_released(self):
        """Test a released Kerberos credential refuses to produce tokens."""
        cred = KerberosCredential(ccache="/tmp/none")
        cred.release()
        assert cred.released
        with pytest.raises(CredentialError):
            cred.spnego_auth("HTTP/auth.cern.ch")
        with pytest.raises(CredentialError):
            cred.sign(httpx.Request("GET", "https://auth.cern.ch/"), "HTTP/auth.cern.ch")

    def test_spnego_auth_configuration(self):
        """Test Kerberos credentials drive httpx-gssapi with the cached creds."""
        pytest.importorskip("gssapi")
        httpx_gssapi = pytest.importorskip("httpx_gssapi")
        creds = object()
        cred = KerberosCredential(creds=creds, ccache="/tmp/cc")

        auth = cred.spnego_auth(opportunistic=True)

        assert isinstance(auth, KerberosAuth)
        assert isinstance(auth._spnego, httpx_gssapi.HTTPSPNEGOAuth)
        assert auth._spnego.creds is creds
        assert auth._spnego.opportunistic_auth is True
        assert auth._spnego.mutual_authentication == httpx_gssapi.DISABLED

    def test_gss_failure_becomes_credential_error(self):
        """Test token generation failures surface as CredentialError."""
        exceptions = pytest.importorskip("httpx_gssapi.exceptions")

        class FailingSPNEGO:
            def sync_auth_flow(self, request):
                raise exceptions.SPNEGOExchangeError("no ticket for HTTP@auth.cern.ch")
                yield request

        auth = KerberosAuth(FailingSPNEGO(), "HTTP@auth.cern.ch")
        flow = auth.sync_auth_flow(httpx.Request("GET", "https://auth.cern.ch/"))

        with pytest.raises(CredentialError) as exc_info:
            next(flow)
        assert "HTTP@auth.cern.ch" in str(exc_info.value)

    def test_missing_file_cache(self, tmp_path, monkeypatch):
        """Test a missing ticket cache fails with CredentialError."""
        monkeypatch.setenv("KRB5_CONFIG", DEFAULT_KRB5_CONFIG)
        with pytest.raises(CredentialError):
            KerberosCredential.from_ccache(
                ccache=f"FILE:{tmp_path / 'krb5cc_missing'}",
                config_path=str(tmp_path / "krb5.conf"),
            )

    def test_config_exported_before_acquire(self, tmp_path, monkeypatch):
        """Test the chosen krb5.conf is handed to the Kerberos library."""
        monkeypatch.setenv("KRB5_CONFIG", "/etc/krb5-other.conf")
        conf = tmp_path / "krb5.conf"
        conf.write_text(KRB5_CONF)

        with pytest.raises(CredentialError):
            KerberosCredential.from_ccache(
                ccache=f"FILE:{tmp_path / 'krb5cc_missing'}",
                config_path=str(conf),
            )

        assert os.environ["KRB5_CONFIG"] == str(conf)


    @pytest.mark.skipif(gssapi_available(), reason="GSSAPI installed")
    def test_gssapi_missing(self, tmp_path, monkeypatch):
        """Test loading without GSSAPI fails with CredentialError."""
        monkeypatch.setenv("KRB5_CONFIG", DEFAULT_KRB5_CONFIG)
        with pytest.raises(CredentialError) as exc_info:
            KerberosCredential.from_ccache(config_path=str(tmp_path / "krb5.conf"))
        assert "cernsso[kerberos]" in str(exc_info.value)


class TestNegotiateAuth:
    """Tests for the SPNEGO authentication flow."""

    def _client(self, server):
        return httpx.Client(transport=httpx.MockTransport(server), follow_redirects=True)

    def test_service_principal(self):
        """Test HTTP service principal naming."""
        assert service_principal("auth.cern.ch") == "HTTP/auth.cern.ch"

    def test_is_negotiate_challenge(self):
        """Test challenge detection."""
        challenge = httpx.Response(401, headers={"WWW-Authenticate": "Negotiate"})
        basic = httpx.Response(401, headers={"WWW-Authenticate": 'Basic realm="x"'})
        assert is_negotiate_challenge(challenge)
        assert not is_negotiate_challenge(basic)
        assert not is_negotiate_challenge(httpx.Response(200))

    def test_auth_server_signed_up_front(self, credential):
        """Test requests to the auth server carry a token immediately."""
        server = FakeSSOServer()
        server.add("GET", "https://auth.cern.ch/x", require_negotiate(lambda r: httpx.Response(200)))
        client = self._client(server)
        try:
            auth = NegotiateAuth(credential, SessionCookieJar.for_client(client), auth_server="auth.cern.ch")
            response = client.get("https://auth.cern.ch/x", auth=auth)
        finally:
            client.close()

        assert response.status_code == 200
        assert len(server.requests) == 1

    def test_challenge_replayed_once(self, credential):
        """Test a 401 Negotiate challenge is answered once, for the challenging host."""
        server = FakeSSOServer()
        server.add("GET", "https://app.cern.ch/", lambda r: httpx.Response(302, headers={"Location": "https://login.cern.ch/sso"}))
        server.add("GET", "https://login.cern.ch/sso", require_negotiate(lambda r: httpx.Response(200, text="ok")))
        client = self._client(server)
        try:
            auth = NegotiateAuth(credential, SessionCookieJar.for_client(client), auth_server="auth.cern.ch")
            response = client.get("https://app.cern.ch/", auth=auth)
        finally:
            client.close()

        assert response.status_code == 200
        assert response.text == "ok"
        assert credential.principals == ["HTTP/login.cern.ch"]
        assert len(server.requests_to("GET", "https://login.cern.ch/sso")) == 2

    def test_persistent_challenge_not_looped(self, credential):
        """Test a server that keeps challenging gets a single retry."""
        server = FakeSSOServer()
        server.add("GET", "https://login.cern.ch/sso", lambda r: httpx.Response(401, headers={"WWW-Authenticate": "Negotiate"}))
        client = self._client(server)
        try:
            auth = NegotiateAuth(credential, SessionCookieJar.for_client(client))
            response = client.get("https://login.cern.ch/sso", auth=auth)
        finally:
            client.close()

        assert response.status_code == 401
        assert len(server.requests) == 2

    def test_replay_carries_collected_cookies(self, credential):
        """Test the replayed request carries cookies set earlier in the exchange."""
        server = FakeSSOServer()
        server.add(
            "GET",
            "https://login.cern.ch/start",
            lambda r: httpx.Response(
                302,
                headers=[("Location", "https://login.cern.ch/sso"), ("Set-Cookie", "AUTH_SESSION_ID=42; Path=/")],
            ),
        )
        server.add("GET", "https://login.cern.ch/sso", require_negotiate(lambda r: httpx.Response(200)))
        client = self._client(server)
        try:
            auth = NegotiateAuth(credential, SessionCookieJar.for_client(client))
            client.get("https://login.cern.ch/start", auth=auth)
        finally:
            client.close()

        replay = server.requests_to("GET", "https://login.cern.ch/sso")[-1]
        assert "AUTH_SESSION_ID=42" in replay.headers["Cookie"]
        assert replay.headers["Authorization"].startswith("Negotiate ")

    def test_post_body_replayed(self, credential):
        """Test a challenged POST is replayed with its body."""
        server = FakeSSOServer()
        server.add("POST", "https://keystone.cern.ch/v3", require_negotiate(lambda r: httpx.Response(200)))
        client = self._client(server)
        try:
            auth = NegotiateAuth(credential, SessionCookieJar.for_client(client))
            client.post("https://keystone.cern.ch/v3", content=b"a=1", auth=auth)
        finally:
            client.close()

        posts = server.requests_to("POST", "https://keystone.cern.ch/v3")
        assert [p.content for p in posts] == [b"a=1", b"a=1"]
