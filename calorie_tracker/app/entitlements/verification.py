"""Transaction verification and signing."""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
from typing import Mapping, Protocol

from .exceptions import VerificationFailed
from .models import Transaction, VerificationResult


class TransactionSigner(Protocol):
    """Protocol describing signing behavior for transaction claims."""

    def sign(self, claims: Mapping[str, object]) -> str:
        ...

    def matches(self, claims: Mapping[str, object], signature: str) -> bool:
        ...


class HMACTransactionSigner:
    """HMAC based signer for transaction claims issued by the sandbox provider."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("secret must be provided")
        self._secret = secret.encode("utf-8")

    def _digest(self, claims: Mapping[str, object]) -> bytes:
        serialized = json.dumps(claims, sort_keys=True, separators=(",", ":")).encode("utf-8")
        return hmac.new(self._secret, serialized, hashlib.sha256).digest()

    def sign(self, claims: Mapping[str, object]) -> str:
        return base64.urlsafe_b64encode(self._digest(claims)).decode("utf-8")

    def matches(self, claims: Mapping[str, object], signature: str) -> bool:
        try:
            provided = base64.urlsafe_b64decode(signature.encode("utf-8"))
        except (ValueError, TypeError):
            return False
        return hmac.compare_digest(provided, self._digest(claims))


class TransactionVerifier(Protocol):
    def verify(self, result: VerificationResult) -> Transaction:
        ...


class ProviderTransactionVerifier:
    """Trusts the provider's own verification verdict."""

    def verify(self, result: VerificationResult) -> Transaction:
        if not result.verified:
            raise VerificationFailed(
                detail={
                    "transaction_id": result.transaction.transaction_id,
                    "reason": result.error or "unverified",
                }
            )
        return result.transaction


class SignedTransactionVerifier(ProviderTransactionVerifier):
    """Requires the provider verdict and a valid signature over the claims."""

    def __init__(self, signer: TransactionSigner) -> None:
        self._signer = signer

    def verify(self, result: VerificationResult) -> Transaction:
        transaction = super().verify(result)
        if not result.signature or not self._signer.matches(transaction.to_claims(), result.signature):
            raise VerificationFailed(
                detail={
                    "transaction_id": transaction.transaction_id,
                    "reason": "signature_mismatch",
                }
            )
        return transaction
