"""
IMAP OAuth2 Authentication

Gets one XOAUTH2 bearer token per run for a Microsoft or Google mailbox.
The provider is picked from the IMAP host name.

Microsoft: tenant looked up from the mailbox domain, then an MSAL device code
login (pip install msal).
Google: installed-app consent in the browser with a loopback redirect
(pip install google-auth-oauthlib).
"""

import http.client
import json
import os
import re
import ssl
import sys
import urllib.parse

PROVIDER_MICROSOFT = "microsoft"
PROVIDER_GOOGLE = "google"

MICROSOFT_IMAP_SCOPE = "https://outlook.office365.com/IMAP.AccessAsUser.All"
GOOGLE_IMAP_SCOPE = "https://mail.google.com/"

_PROVIDER_HINTS = (
    (PROVIDER_MICROSOFT, ("outlook", "office365", "microsoft")),
    (PROVIDER_GOOGLE, ("gmail", "google")),
)
_TENANT_RE = re.compile(r"/([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})")


def detect_oauth2_provider(host):
    """Returns PROVIDER_MICROSOFT, PROVIDER_GOOGLE or None for an IMAP host name."""
    lowered = host.lower()
    for provider, hints in _PROVIDER_HINTS:
        if any(hint in lowered for hint in hints):
            return provider
    return None


def auth_description(provider):
    if provider:
        return f"OAuth2/{provider} (XOAUTH2)"
    return "Basic (password)"


def _get_json(base, path, timeout=10):
    """
    GET ``path`` below ``base`` and decode the JSON body.

    ``base`` is either a bare host name (HTTPS) or an http:// / https:// URL whose
    path is prefixed to ``path``.
    """
    if not base or "\r" in base or "\n" in base:
        raise ValueError("Invalid host")

    url = urllib.parse.urlsplit(base if "://" in base else f"https://{base}")
    if not url.hostname:
        raise ValueError("Invalid host")
    netloc = f"{url.hostname}:{url.port}" if url.port else url.hostname
    full_path = url.path.rstrip("/") + (path if path.startswith("/") else f"/{path}")

    if url.scheme == "https":
        conn = http.client.HTTPSConnection(netloc, timeout=timeout, context=ssl.create_default_context())
    else:
        conn = http.client.HTTPConnection(netloc, timeout=timeout)
    try:
        conn.request("GET", full_path, headers={"Accept": "application/json"})
        response = conn.getresponse()
        body = response.read()
    finally:
        conn.close()

    if response.status != 200:
        raise RuntimeError(f"HTTP {response.status} from {netloc}")
    return json.loads(body.decode("utf-8"))


def discover_microsoft_tenant(email):
    """
    Looks up the tenant ID of a mailbox domain in its OpenID configuration document.
    Returns None (after printing why) when the lookup fails.
    """
    domain = email.rpartition("@")[2].strip().lower()
    if not domain:
        print(f"Error: Tenant lookup failed: no domain in '{email}'")
        return None

    base = os.getenv("OAUTH2_MICROSOFT_DISCOVERY_URL") or "login.microsoftonline.com"
    path = f"/{urllib.parse.quote(domain, safe='.-')}/.well-known/openid-configuration"
    try:
        document = _get_json(base, path)
    except (OSError, http.client.HTTPException, RuntimeError, ValueError) as e:
        print(f"Error: Tenant lookup failed for '{domain}': {e}")
        return None

    issuer = document.get("issuer", "")
    match = _TENANT_RE.search(issuer)
    if match is None:
        print(f"Error: Tenant lookup failed: no tenant ID in issuer '{issuer}'")
        return None
    return match.group(1)


def _microsoft_authority(tenant_id):
    base = os.getenv("OAUTH2_MICROSOFT_AUTHORITY_BASE_URL") or "https://login.microsoftonline.com"
    return f"{base.rstrip('/')}/{tenant_id}"


def acquire_microsoft_token(client_id, email):
    tenant_id = discover_microsoft_tenant(email)
    if not tenant_id:
        return None

    try:
        import msal
    except ImportError:
        print("Error: Microsoft OAuth2 needs the 'msal' package (pip install msal).")
        sys.exit(1)

    print(f"Microsoft tenant: {tenant_id}")
    app = msal.PublicClientApplication(client_id, authority=_microsoft_authority(tenant_id))

    flow = app.initiate_device_flow(scopes=[MICROSOFT_IMAP_SCOPE])
    if "user_code" not in flow:
        print(f"Error: Device code login did not start: {flow.get('error_description', 'no reason given')}")
        return None

    # Tells the user which URL to open and which code to enter
    print(flow["message"])
    result = app.acquire_token_by_device_flow(flow)
    token = result.get("access_token")
    if not token:
        print(f"Error: Device code login failed: {result.get('error_description', 'no reason given')}")
    return token


def _google_client_config(client_id, client_secret):
    return {
        "installed": {
            "client_id": client_id,
            "client_secret": client_secret,
            "auth_uri": os.getenv("OAUTH2_GOOGLE_AUTH_URL") or "https://accounts.google.com/o/oauth2/auth",
            "token_uri": os.getenv("OAUTH2_GOOGLE_TOKEN_URL") or "https://oauth2.googleapis.com/token",
            "redirect_uris": ["http://localhost"],
        }
    }


def acquire_google_token(client_id, client_secret):
    try:
        from google_auth_oauthlib.flow import InstalledAppFlow
    except ImportError:
        print("Error: Google OAuth2 needs the 'google-auth-oauthlib' package (pip install google-auth-oauthlib).")
        sys.exit(1)

    flow = InstalledAppFlow.from_client_config(
        _google_client_config(client_id, client_secret), scopes=[GOOGLE_IMAP_SCOPE]
    )
    print("Waiting for Google consent in the browser (a URL is printed if none opens)...")
    credentials = flow.run_local_server(port=0)

    token = credentials.token if credentials else None
    if not token:
        print("Error: Google consent finished without an access token.")
    return token


def acquire_oauth2_token_for_provider(provider, client_id, email, client_secret=None):
    """
    Runs the login flow of ``provider``; returns the access token or None.

    ``email`` is only used by Microsoft (tenant lookup), ``client_secret`` only by Google,
    which cannot do without it.
    """
    if provider == PROVIDER_MICROSOFT:
        return acquire_microsoft_token(client_id, email)
    if provider == PROVIDER_GOOGLE:
        if client_secret:
            return acquire_google_token(client_id, client_secret)
        print(
            "Error: Google OAuth2 needs a client secret: pass --oauth2-client-secret "
            "(--src-/--dest- for the copy tool) or set the matching OAUTH2_CLIENT_SECRET variable."
        )
        return None
    print(f"Error: No OAuth2 login flow for provider '{provider}'.")
    return None


def acquire_token(host, client_id, email, client_secret=None, label=None):
    """
    Picks the provider for ``host`` and logs in.

    Returns (token, provider). Exits with status 1 when the provider is unknown or
    no token could be obtained.
    """
    provider = detect_oauth2_provider(host)
    if provider is None:
        print(f"Error: '{host}' is neither a Microsoft nor a Google IMAP host; cannot use OAuth2.")
        sys.exit(1)

    account = f" ({label})" if label else ""
    print(f"Requesting {provider} OAuth2 token{account}...")
    token = acquire_oauth2_token_for_provider(provider, client_id, email, client_secret)
    if not token:
        print(f"Error: No OAuth2 token{account}.")
        sys.exit(1)
    print(f"Got {provider} OAuth2 token{account}.\n")
    return token, provider
