import logging
import requests
from models import Session

class BackendError(Exception):
    """
	Raised when the hosted backend rejects a request or cannot be reached.

    Attributes:
        message (str): Human readable message taken from the backend response when available.
        status (int or None): HTTP status code of the failed response, None for transport errors.
    """
    def __init__(self, message, status=None):
        super().__init__(message)
        self.message = message
        self.status = status

class AuthError(BackendError):
    pass

def _error_message(response):
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("msg", "message", "error_description", "error"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {response.status_code}"

class BackendClient:
    """
	Thin facade over the hosted backend-as-a-service.

    Wraps the auth, row, and remote procedure endpoints of the backend REST API.
    Each instance acts on behalf of one caller: when an access token is given it
    is sent as the bearer token so row level security scopes every query to the
    caller's own rows.

    Args:
        base_url (str): Root URL of the backend project.
        anon_key (str): Public API key sent with every request.
        access_token (str, optional): Access token of the signed-in identity.
        timeout (int, optional): Transport timeout in seconds.
    """
    def __init__(self, base_url, anon_key, access_token=None, timeout=30, http=None):
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.access_token = access_token
        self.timeout = timeout
        self.http = http or requests.Session()

    def _headers(self, extra=None):
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.access_token or self.anon_key}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    def _request(self, method, path, error_class=BackendError, headers=None, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            response = self.http.request(method, url, headers=self._headers(headers), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logging.error(f"Backend request {method} {path} failed: {e}")
            raise error_class(str(e))
        if not response.ok:
            message = _error_message(response)
            logging.warning(f"Backend request {method} {path} returned {response.status_code}: {message}")
            raise error_class(message, response.status_code)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    # Auth

    def sign_in_with_password(self, email, password):
        data = self._request(
            "POST", "/auth/v1/token",
            error_class=AuthError,
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return Session.from_response(data)

    def sign_up(self, email, password, first_name=None, last_name=None):
        """
	Registers a new identity with credential sign-up.

        The profile fields are passed as user metadata; the backend creates the
        profile and balance rows from them.

        Returns:
            Session or None: The new session when the backend signs the user in
            right away, None when email confirmation is pending.
        """
        data = self._request(
            "POST", "/auth/v1/signup",
            error_class=AuthError,
            json={
                "email": email,
                "password": password,
                "data": {"first_name": first_name, "last_name": last_name},
            },
        )
        if data and data.get("access_token"):
            return Session.from_response(data)
        return None

    def get_oauth_url(self, provider, redirect_to, code_challenge):
        request = requests.Request("GET", f"{self.base_url}/auth/v1/authorize", params={
            "provider": provider,
            "redirect_to": redirect_to,
            "code_challenge": code_challenge,
            "code_challenge_method": "s256",
            "access_type": "offline",
            "prompt": "consent",
        })
        return request.prepare().url

    def exchange_code_for_session(self, auth_code, code_verifier):
        data = self._request(
            "POST", "/auth/v1/token",
            error_class=AuthError,
            params={"grant_type": "pkce"},
            json={"auth_code": auth_code, "code_verifier": code_verifier},
        )
        return Session.from_response(data)

    def sign_out(self):
        if not self.access_token:
            return
        self._request("POST", "/auth/v1/logout", error_class=AuthError)

    # Rows

    def select(self, table, filters=None, order=None, single=False):
        params = {"select": "*"}
        for column, value in (filters or {}).items():
            params[column] = f"eq.{value}"
        if order:
            params["order"] = order
        rows = self._request("GET", f"/rest/v1/{table}", params=params) or []
        if single:
            return rows[0] if rows else None
        return rows

    def insert(self, table, row):
        rows = self._request("POST", f"/rest/v1/{table}", json=row, headers={"Prefer": "return=representation"})
        return rows[0] if rows else None

    def update(self, table, filters, values):
        params = {column: f"eq.{value}" for column, value in filters.items()}
        return self._request("PATCH", f"/rest/v1/{table}", params=params, json=values, headers={"Prefer": "return=representation"})

    # Remote procedures

    def rpc(self, name, args):
        return self._request("POST", f"/rest/v1/rpc/{name}", json=args)

    def spend_credits(self, amount, description):
        return bool(self.rpc("spend_credits", {"amount": amount, "description": description}))

    def add_credits(self, amount, description):
        self.rpc("add_credits", {"amount": amount, "description": description})
        return True
