"""
API-key stamping for the backend's own custody requests.

Only requests that originate from the backend (activity queries,
provisioning, warchest signing) are stamped here. End-user requests arrive
already stamped by the browser and go through the relay untouched.
"""
import base64
import json
import logging
from typing import Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from ..exceptions import StampError
from ..models import Stamp

logger = logging.getLogger(__name__)

SIGNATURE_SCHEME = "SIGNATURE_SCHEME_TK_API_P256"


class ApiKeyStamper:
    """
    Produces X-Stamp headers from a P-256 API key.

    Args:
        private_key_hex: API private key as a hex-encoded P-256 scalar
        public_key_hex: Expected compressed public key; checked against the
            derived one when given
    """

    def __init__(self, private_key_hex: str, public_key_hex: Optional[str] = None):
        key_hex = private_key_hex[2:] if private_key_hex.startswith("0x") else private_key_hex
        try:
            scalar = int(key_hex, 16)
            self._private_key = ec.derive_private_key(scalar, ec.SECP256R1())
        except ValueError as e:
            raise StampError(f"Invalid API private key: {e}") from e

        self.public_key = self._private_key.public_key().public_bytes(
            Encoding.X962, PublicFormat.CompressedPoint
        ).hex()

        if public_key_hex and public_key_hex.lower() != self.public_key:
            raise StampError("API public key does not match the private key")

    def stamp(self, body: bytes) -> Stamp:
        """
        Sign the exact request body.

        Args:
            body: Request body bytes, as they will be sent

        Returns:
            Stamp carrying the X-Stamp header value
        """
        signature = self._private_key.sign(body, ec.ECDSA(hashes.SHA256()))
        payload = json.dumps(
            {
                "publicKey": self.public_key,
                "scheme": SIGNATURE_SCHEME,
                "signature": signature.hex(),
            },
            separators=(",", ":"),
        )
        encoded = base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")
        return Stamp.api_key(encoded)


def decode_stamp(value: str) -> dict:
    """Decode an X-Stamp header value back into its JSON fields"""
    padded = value + "=" * (-len(value) % 4)
    return json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
