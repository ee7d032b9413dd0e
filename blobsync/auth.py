"""Request authentication for the storage service."""

import base64
import hashlib
import hmac
from collections.abc import Generator
from email.utils import formatdate
from urllib.parse import parse_qsl

import httpx

from .exceptions import ConfigError
from .utils import API_VERSION

# Standard headers included positionally in the Shared Key string to sign
_SIGNED_HEADERS = (
    "content-encoding",
    "content-language",
    "content-length",
    "content-md5",
    "content-type",
    "date",
    "if-modified-since",
    "if-match",
    "if-none-match",
    "if-unmodified-since",
    "range",
)


def add_standard_headers(request: httpx.Request) -> None:
    """Set the date and version headers every storage request needs."""
    if "x-ms-date" not in request.headers:
        request.headers["x-ms-date"] = formatdate(usegmt=True)
    if "x-ms-version" not in request.headers:
        request.headers["x-ms-version"] = API_VERSION


class SharedKeyAuth(httpx.Auth):
    """Signs requests with the storage account key (Shared Key scheme)."""

    def __init__(self, account_name: str, account_key: str):
        """Initialize the signer.

        Args:
            account_name: Storage account name
            account_key: Base64-encoded account key

        Raises:
            ConfigError: If the key is not valid base64
        """
        self.account_name = account_name
        try:
            self._key = base64.b64decode(account_key, validate=True)
        except (ValueError, TypeError) as e:
            raise ConfigError("Account key is not valid base64") from e

    def auth_flow(
        self, request: httpx.Request
    ) -> Generator[httpx.Request, httpx.Response, None]:
        add_standard_headers(request)
        signature = self.sign(self.string_to_sign(request))
        request.headers["Authorization"] = f"SharedKey {self.account_name}:{signature}"
        yield request

    def sign(self, string_to_sign: str) -> str:
        """Return the base64 HMAC-SHA256 signature of a string."""
        digest = hmac.new(
            self._key, string_to_sign.encode("utf-8"), hashlib.sha256
        ).digest()
        return base64.b64encode(digest).decode("utf-8")

    def string_to_sign(self, request: httpx.Request) -> str:
        """Build the canonical string for a request.

        Args:
            request: Request with all headers already set

        Returns:
            The string the signature is computed over
        """
        lines = [request.method.upper()]
        for name in _SIGNED_HEADERS:
            value = request.headers.get(name, "")
            if name == "content-length" and value == "0":
                value = ""
            lines.append(value)

        canonical_headers = "".join(
            f"{name}:{request.headers[name].strip()}\n"
            for name in sorted(
                key.lower()
                for key in request.headers.keys()
                if key.lower().startswith("x-ms-")
            )
        )

        raw_path = request.url.raw_path.split(b"?", 1)[0].decode("ascii")
        canonical_resource = f"/{self.account_name}{raw_path or '/'}"

        params: dict[str, list[str]] = {}
        for key, value in request.url.params.multi_items():
            params.setdefault(key.lower(), []).append(value)
        for key in sorted(params):
            canonical_resource += f"\n{key}:{','.join(sorted(params[key]))}"

        return "\n".join(lines) + "\n" + canonical_headers + canonical_resource


class SasTokenAuth(httpx.Auth):
    """Authorizes requests by appending a shared access signature."""

    def __init__(self, sas_token: str):
        self._params = parse_qsl(sas_token.lstrip("?"), keep_blank_values=True)
        if not self._params:
            raise ConfigError("SAS token is empty")

    def auth_flow(
        self, request: httpx.Request
    ) -> Generator[httpx.Request, httpx.Response, None]:
        add_standard_headers(request)
        request.url = request.url.copy_merge_params(dict(self._params))
        yield request
