#!/usr/bin/env python3
"""
SSO Login Example

Demonstrates how to use cernsso to obtain session cookies for a web
application behind the CERN SSO. This example shows:
1. Configuration from the environment
2. Logging in with the current Kerberos ticket
3. Checking session validity
4. Inspecting the negotiation trace
5. Falling back to the scripted browser

Requires a valid Kerberos ticket (kinit) and the cernsso[kerberos] extra.
"""

import argparse
import logging
import sys

import structlog

from cernsso import (
    BrowserLoginStrategy,
    LoginError,
    SSOClient,
    SSOConfig,
    SSOError,
)


def main():
    """Log in to a protected URL and report the session cookies."""
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("url", help="protected https URL to log in to")
    parser.add_argument("--browser", action="store_true", help="use the scripted browser")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if args.verbose else logging.INFO
        ),
    )

    print("=" * 60)
    print("cernsso - SSO Login Example")
    print("=" * 60)
    print()

    # ==========================================================================
    # EXAMPLE 1: Configuration
    # ==========================================================================
    print("1. Configuration")
    print("-" * 40)

    config = SSOConfig.from_env()
    print(f"   Auth Server: {config.auth_server}")
    print(f"   Realms: {', '.join(config.realms)}")
    print(f"   Validity Margin: {config.validity_margin}")
    print()

    strategy = BrowserLoginStrategy() if args.browser else None
    options = {"strategy": strategy} if strategy is not None else {}

    try:
        with SSOClient(args.url, config=config, **options) as client:
            # ==================================================================
            # EXAMPLE 2: Login
            # ==================================================================
            print(f"2. Login ({client.strategy.name})")
            print("-" * 40)

            try:
                cookies = client.login()
            except LoginError as e:
                print(f"   Login: FAILED ({e.kind.name})")
                print(f"   Error: {e}")
                return 1

            print(f"   Cookies: {len(cookies)}")
            for cookie in cookies:
                print(f"   - {cookie.name} @ {cookie.url} (expires {cookie.expires:%Y-%m-%d %H:%M})")
            print()

            # ==================================================================
            # EXAMPLE 3: Validity
            # ==================================================================
            print("3. Session Validity")
            print("-" * 40)

            expiry, ok = client.valid()
            print(f"   Session Expiry: {expiry}")
            print(f"   Usable: {'YES' if ok else 'NO'}")
            print()

            # ==================================================================
            # EXAMPLE 4: Trace
            # ==================================================================
            print("4. Negotiation Trace")
            print("-" * 40)

            for transition in client.trace():
                print(f"   {transition.from_state.name} -> {transition.to_state.name}")
            print()
    except SSOError as e:
        print(f"   Setup failed: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
