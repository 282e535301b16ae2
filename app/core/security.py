import hashlib
import hmac
import secrets
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from app.core.config import get_settings

ACCESS_TOKEN_SALT = "captcha-rewards-access"
CAPTCHA_PROOF_SALT = "captcha-proof"


def _serializer(salt: str) -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt=salt,
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_access_token(payload: dict[str, Any]) -> str:
    """Sign a bearer token; expiry is enforced on load."""
    return _serializer(ACCESS_TOKEN_SALT).dumps(payload)


def load_access_token(token: str) -> dict[str, Any] | None:
    max_age = get_settings().access_token_max_age_seconds
    try:
        return _serializer(ACCESS_TOKEN_SALT).loads(token, max_age=max_age)
    except (BadSignature, SignatureExpired):
        return None


def normalize_answer(answer: str) -> str:
    return (answer or "").strip().lower()


def answer_digest(nonce: str, answer: str) -> str:
    """HMAC of the normalised answer, bound to the proof nonce."""
    key = get_settings().secret_key.encode("utf-8")
    msg = f"{nonce}:{normalize_answer(answer)}".encode("utf-8")
    return hmac.new(key, msg, hashlib.sha256).hexdigest()


def create_captcha_proof(user_id: str, answer: str) -> tuple[str, str]:
    """Return (proof_token, nonce). The token carries a digest, never the answer itself."""
    nonce = secrets.token_urlsafe(16)
    payload = {"u": user_id, "n": nonce, "d": answer_digest(nonce, answer)}
    return _serializer(CAPTCHA_PROOF_SALT).dumps(payload), nonce


def load_captcha_proof(token: str) -> dict[str, Any] | None:
    """Decode a proof; None when the signature is bad or it is older than the TTL."""
    max_age = get_settings().captcha_proof_ttl_seconds
    try:
        data = _serializer(CAPTCHA_PROOF_SALT).loads(token, max_age=max_age)
    except (BadSignature, SignatureExpired):
        return None
    if not isinstance(data, dict) or not all(k in data for k in ("u", "n", "d")):
        return None
    return data


def answer_matches(proof: dict[str, Any], answer: str) -> bool:
    return hmac.compare_digest(answer_digest(proof["n"], answer), proof["d"])


def verify_razorpay_payment(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    expected = hmac.new(
        secret.encode("utf-8"),
        f"{order_id}|{payment_id}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(expected, signature or "")
