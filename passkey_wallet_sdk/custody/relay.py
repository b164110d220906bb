"""
Relay for client-stamped custody requests.

The browser signs the custody request body with the user's passkey (or a
browser-held API key) and hands the backend a fully-formed request. The
relay posts it unchanged. It never reads, alters or produces the signature,
so the backend cannot act on a user's behalf without that user's stamp.
"""
import logging
import urllib.parse
from typing import Optional, Tuple, Union

import requests

from ..config import validate_url
from ..exceptions import TransientNetworkError
from ..models import SignedRequest, Stamp

DEFAULT_RELAY_TIMEOUT = 5

_DEFAULT_PORTS = {"https": 443, "http": 80}


def _host_and_port(netloc: str, scheme: str) -> Tuple[str, Optional[int]]:
    parsed = urllib.parse.urlsplit(f"//{netloc}")
    return (parsed.hostname or "", parsed.port or _DEFAULT_PORTS.get(scheme))


class StampedRequestRelay:
    """
    Forwards pre-signed requests to the custody service.

    No automatic retries are mounted: a user-signed activity must not be
    resubmitted behind the caller's back.

    Args:
        api_host: Custody API host; when set, other hosts are refused
        timeout: Request timeout in seconds
        session: Optional requests session to use
        logger: Optional logger instance
    """

    def __init__(
        self,
        api_host: Optional[str] = None,
        timeout: float = DEFAULT_RELAY_TIMEOUT,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.api_host = api_host
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(__name__)

    def _check_url(self, url: str) -> None:
        validate_url("url", url)
        if self.api_host:
            parsed = urllib.parse.urlparse(url)
            # Hostnames compare case-insensitively; an omitted port is the scheme default
            if _host_and_port(parsed.netloc, parsed.scheme) != _host_and_port(self.api_host, parsed.scheme):
                raise ValueError(f"Refusing to relay to {parsed.netloc!r}; expected {self.api_host!r}")

    def forward(self, url: str, body: Union[str, bytes], stamp: Stamp) -> Tuple[int, bytes]:
        """
        POST a signed body with its stamp header.

        Args:
            url: Custody endpoint URL
            body: The exact body that was signed
            stamp: Stamp produced by the client

        Returns:
            Tuple of (status_code, raw response body)

        Raises:
            ValueError: If the URL is not allowed
            TransientNetworkError: If the request could not be completed
        """
        self._check_url(url)
        payload = body.encode("utf-8") if isinstance(body, str) else body

        try:
            response = self.session.post(
                url,
                data=payload,
                headers={stamp.header_name: stamp.header_value},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            self.logger.error(f"Error while forwarding signed request to {url}: {e}")
            raise TransientNetworkError(f"error while forwarding signed request: {e}") from e

        self.logger.debug(
            f"Forwarded request {url} ({stamp.header_name}). Response status: {response.status_code}"
        )
        return response.status_code, response.content

    def forward_signed(self, signed_request: SignedRequest) -> Tuple[int, bytes]:
        """Forward a SignedRequest as received from the client"""
        return self.forward(signed_request.url, signed_request.body, signed_request.stamp)
