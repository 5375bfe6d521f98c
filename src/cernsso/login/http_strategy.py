"""
cernsso HTTP Login Strategy

The login negotiation over raw HTTP round trips.

Flow:
1. Signed GET of the login URL; redirects are followed and SPNEGO
   challenges answered by the transport
2. Anything but 200 fails the login
3. Final host is the token-exchange host: decode the grant from the URL
   fragment and re-post it (signed)
4. Otherwise: replay the broker's SAML POST-binding form to the service
   provider (unsigned), going through the Kerberos button first if the
   broker shows its login page
5. Collect and normalize the cookies of the login URL and realm endpoints
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple

import attrs
import httpx
import structlog
from returns.result import Failure

from cernsso.core.exceptions import (
    LoginError,
    ProtocolError,
    SSOError,
    StateError,
)
from cernsso.core.state_machine import StateMachineBase, TransitionEntry
from cernsso.core.types import Cookie, LoginErrorKind
from cernsso.login.keystone import (
    FORM_CONTENT_TYPE,
    base_url,
    decode_fragment,
    encode_form,
    raw_fragment,
)
from cernsso.login.normalize import normalize_cookies
from cernsso.login.saml import kerberos_button_url, locate_form, resolve_action
from cernsso.login.strategy import LoginEnvironment, LoginStrategy
from cernsso.login.types import (
    AssertionPosted,
    Branch,
    CookiesNormalized,
    GrantPosted,
    KerberosButtonFollowed,
    KeystoneRedirectReceived,
    LoginContext,
    LoginPageReceived,
    LoginState,
    NegotiationFailed,
)
from cernsso.transport.http import default_headers
from cernsso.transport.negotiate import NegotiateAuth

logger = structlog.get_logger()


# =============================================================================
# INVARIANTS
# =============================================================================


def no_cookies_before_normalize(state: LoginState, ctx: LoginContext) -> bool:
    """Cookies only appear once the negotiation completed."""
    if state == LoginState.DONE:
        return True
    return not ctx.cookies


def done_requires_concrete_expiry(state: LoginState, ctx: LoginContext) -> bool:
    """Every cookie of a finished negotiation has a timezone-aware expiry."""
    if state != LoginState.DONE:
        return True
    return all(c.expires is not None and c.expires.tzinfo is not None for c in ctx.cookies)


# =============================================================================
# LOGIN STATE MACHINE
# =============================================================================


_FAILABLE = (
    LoginState.START,
    LoginState.KERBEROS_BUTTON,
    LoginState.KEYSTONE,
    LoginState.SAML,
    LoginState.NORMALIZE,
)


@attrs.define
class LoginStateMachine(StateMachineBase[LoginState, LoginContext]):
    """
    Login negotiation state machine.

    States:
    - START: login URL not fetched yet
    - KEYSTONE: grant found in a token-exchange URL fragment
    - SAML: broker page received, POST-binding form expected
    - KERBEROS_BUTTON: broker login page left through its Kerberos button
    - NORMALIZE: final POST done, cookies not collected yet
    - DONE: session cookie set available
    - FAILED: negotiation aborted
    """

    def initial_state(self) -> LoginState:
        return LoginState.START

    def transition_table(
        self,
    ) -> Dict[Tuple[LoginState, type], TransitionEntry]:
        table: Dict[Tuple[LoginState, type], TransitionEntry] = {
            # Branch decision
            (LoginState.START, KeystoneRedirectReceived): (
                LoginState.KEYSTONE,
                self._handle_keystone_redirect,
            ),
            (LoginState.START, LoginPageReceived): (
                LoginState.SAML,
                self._handle_login_page,
            ),
            # Broker login page detour
            (LoginState.SAML, KerberosButtonFollowed): (
                LoginState.KERBEROS_BUTTON,
                self._handle_kerberos_button,
            ),
            (LoginState.KERBEROS_BUTTON, LoginPageReceived): (
                LoginState.SAML,
                self._handle_login_page,
            ),
            # Final POST
            (LoginState.KEYSTONE, GrantPosted): (
                LoginState.NORMALIZE,
                self._handle_posted,
            ),
            (LoginState.SAML, AssertionPosted): (
                LoginState.NORMALIZE,
                self._handle_posted,
            ),
            (LoginState.NORMALIZE, CookiesNormalized): (
                LoginState.DONE,
                self._handle_cookies,
            ),
        }
        for state in _FAILABLE:
            table[(state, NegotiationFailed)] = (LoginState.FAILED, self._handle_error)
        return table

    def describe(self, event: Any, context: LoginContext) -> Dict[str, Any]:
        """Login details for the trace; cookies appear by name only."""
        details: Dict[str, Any] = {"final_url": context.final_url}
        if context.branch is not None:
            details["branch"] = context.branch.name
        if isinstance(event, (GrantPosted, AssertionPosted)):
            details["action"] = context.action
            details["posted_fields"] = list(context.posted_fields)
        if isinstance(event, CookiesNormalized):
            details["cookies"] = [c.name for c in context.cookies]
        if isinstance(event, NegotiationFailed):
            details["error"] = context.error_message
        return details

    @staticmethod
    def _handle_keystone_redirect(
        event: KeystoneRedirectReceived, ctx: LoginContext
    ) -> LoginContext:
        return attrs.evolve(ctx, final_url=event.final_url, branch=Branch.KEYSTONE)

    @staticmethod
    def _handle_login_page(event: LoginPageReceived, ctx: LoginContext) -> LoginContext:
        return attrs.evolve(ctx, final_url=event.final_url, branch=Branch.SAML)

    @staticmethod
    def _handle_kerberos_button(
        event: KerberosButtonFollowed, ctx: LoginContext
    ) -> LoginContext:
        return attrs.evolve(ctx, final_url=event.url)

    @staticmethod
    def _handle_posted(event: Any, ctx: LoginContext) -> LoginContext:
        return attrs.evolve(ctx, action=event.action, posted_fields=event.field_names)

    @staticmethod
    def _handle_cookies(event: CookiesNormalized, ctx: LoginContext) -> LoginContext:
        return attrs.evolve(ctx, cookies=event.cookies, cookie_count=len(event.cookies))

    @staticmethod
    def _handle_error(event: NegotiationFailed, ctx: LoginContext) -> LoginContext:
        return attrs.evolve(ctx, error_message=event.error_message)


def new_login_machine(login_url: str, log: Any = None) -> LoginStateMachine:
    """Fresh state machine, invariants registered."""
    machine = LoginStateMachine(
        context=LoginContext(login_url=login_url),
        logger=log or structlog.get_logger(),
    )
    machine.add_invariant("no_cookies_before_normalize", no_cookies_before_normalize)
    machine.add_invariant("done_requires_concrete_expiry", done_requires_concrete_expiry)
    return machine


# =============================================================================
# HTTP STRATEGY
# =============================================================================


class HTTPLoginStrategy(LoginStrategy):
    """
    Login negotiation driven by plain HTTP requests.

    Example:
        strategy = HTTPLoginStrategy()
        cookies = strategy.perform(env)
    """

    name = "http"

    def __init__(self) -> None:
        self._machine: Optional[LoginStateMachine] = None

    def last_trace(self) -> List[Any]:
        if self._machine is None:
            return []
        return self._machine.get_trace()

    @property
    def state(self) -> Optional[LoginState]:
        """State reached by the last negotiation."""
        return self._machine.state if self._machine else None

    def perform(self, env: LoginEnvironment) -> List[Cookie]:
        machine = new_login_machine(env.login_url, env.logger)
        self._machine = machine

        env.logger.info("login_start", url=env.login_url, strategy=self.name)
        try:
            cookies = self._negotiate(env, machine)
        except SSOError as e:
            if machine.state in _FAILABLE:
                machine.process_event(NegotiationFailed(error_message=str(e)))
            env.logger.warning(
                "login_failed",
                url=env.login_url,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        env.logger.info("login_success", url=env.login_url, cookies=len(cookies))
        return cookies

    # -------------------------------------------------------------------------
    # Negotiation steps
    # -------------------------------------------------------------------------

    def _negotiate(self, env: LoginEnvironment, machine: LoginStateMachine) -> List[Cookie]:
        response = self._send(env, "GET", env.login_url, signed=True)
        if response.status_code != 200:
            raise LoginError(
                "could not login",
                url=str(response.url),
                status_code=response.status_code,
            )

        final = response.url
        if final.host == env.config.keystone_host:
            env.logger.info("login_branch", branch=Branch.KEYSTONE.name, host=final.host)
            self._advance(machine, KeystoneRedirectReceived(final_url=base_url(final)))
            self._handle_keystone(env, machine, final)
        else:
            env.logger.info("login_branch", branch=Branch.SAML.name, host=final.host)
            self._advance(machine, LoginPageReceived(final_url=base_url(final)))
            self._handle_saml(env, machine, response)

        cookies = normalize_cookies(
            env.jar,
            env.endpoints,
            env.config.cookie_ttl,
            log=env.logger,
        )
        self._advance(machine, CookiesNormalized(cookies=tuple(cookies)))
        return cookies

    def _handle_keystone(
        self,
        env: LoginEnvironment,
        machine: LoginStateMachine,
        final: httpx.URL,
    ) -> None:
        action = base_url(final)
        try:
            pairs = decode_fragment(raw_fragment(final))
        except ProtocolError as e:
            raise ProtocolError(e.message, url=action) from e

        response = self._send(
            env,
            "POST",
            action,
            signed=True,
            content=encode_form(pairs),
            headers={"Content-Type": FORM_CONTENT_TYPE},
        )
        self._check_accepted(response, "token-exchange grant")

        field_names = tuple(key for key, _ in pairs)
        env.logger.info("keystone_grant_posted", action=action, fields=list(field_names))
        self._advance(machine, GrantPosted(action=action, field_names=field_names))

    def _handle_saml(
        self,
        env: LoginEnvironment,
        machine: LoginStateMachine,
        response: httpx.Response,
    ) -> None:
        page, page_url = response.content, response.url
        form = locate_form(page, page_url)

        if form is None:
            button = kerberos_button_url(page, env.config.auth_server)
            if button is not None:
                self._advance(machine, KerberosButtonFollowed(url=base_url(httpx.URL(button))))
                response = self._send(env, "GET", button, signed=True)
                if response.status_code != 200:
                    raise LoginError(
                        "could not login through kerberos button",
                        url=str(response.url),
                        status_code=response.status_code,
                    )
                page, page_url = response.content, response.url
                self._advance(machine, LoginPageReceived(final_url=base_url(page_url)))
                form = locate_form(page, page_url)

        if form is None:
            raise ProtocolError("could not find SAML post form", url=base_url(page_url))

        action = resolve_action(form, page_url)
        response = self._send(
            env,
            "POST",
            action,
            signed=False,
            content=encode_form(form.fields),
            headers={"Content-Type": FORM_CONTENT_TYPE},
        )
        self._check_accepted(response, "SAML assertion")

        field_names = tuple(key for key, _ in form.fields)
        env.logger.info("saml_assertion_posted", action=base_url(httpx.URL(action)))
        self._advance(
            machine,
            AssertionPosted(action=base_url(httpx.URL(action)), field_names=field_names),
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _advance(machine: LoginStateMachine, event: Any) -> None:
        result = machine.process_event(event)
        if isinstance(result, Failure):
            raise StateError(result.failure())

    @staticmethod
    def _check_accepted(response: httpx.Response, what: str) -> None:
        if response.is_error:
            raise LoginError(
                f"{what} was rejected",
                url=str(response.url),
                status_code=response.status_code,
            )

    @staticmethod
    def _send(
        env: LoginEnvironment,
        method: str,
        url: str,
        signed: bool,
        content: Optional[bytes] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        """One round trip; timeouts and I/O failures become LoginError."""
        request_headers = default_headers(env.config.user_agent)
        request_headers.update(headers or {})
        request = env.http.build_request(method, url, headers=request_headers, content=content)

        auth = None
        if signed:
            auth = NegotiateAuth(
                env.credential,
                env.jar,
                auth_server=env.config.auth_server,
                logger=env.logger,
            )

        env.logger.debug("http_request", method=method, url=base_url(request.url), signed=signed)
        try:
            response = env.http.send(request, auth=auth, follow_redirects=True)
        except httpx.TimeoutException as e:
            raise LoginError(
                f"{method} request timed out",
                url=url,
                kind=LoginErrorKind.TIMEOUT,
            ) from e
        except httpx.HTTPError as e:
            raise LoginError(
                f"could not send {method} request: {e}",
                url=url,
                kind=LoginErrorKind.TRANSPORT,
            ) from e

        env.logger.debug(
            "http_response",
            method=method,
            url=base_url(response.url),
            status=response.status_code,
            redirects=len(response.history),
        )
        return response
