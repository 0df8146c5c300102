import hashlib
import hmac


def constant_time_eq(a: str, b: str) -> bool:
    """Compare two strings without short-circuiting on the first mismatch."""
    if len(a) != len(b):
        return False

    result = 0
    for x, y in zip(a.encode("utf-8"), b.encode("utf-8")):
        result |= x ^ y
    return result == 0


class HmacSigner:
    """
    HMAC-SHA256 request signer shared by the SDK and the ingestion service.

    The signed message is "{timestamp}:{nonce}:{body}" where body is the exact
    JSON text sent over the wire.
    """

    def __init__(self, secret: str):
        self._secret = secret.encode("utf-8")

    def __repr__(self) -> str:
        return "HmacSigner(secret=***)"

    def sign(self, timestamp: int | str, nonce: str, body: str) -> str:
        message = f"{timestamp}:{nonce}:{body}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def verify(self, timestamp: int | str, nonce: str, body: str, signature: str) -> bool:
        expected = self.sign(timestamp, nonce, body)
        return constant_time_eq(expected, signature)
