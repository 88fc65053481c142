"""PKCE (Proof Key for Code Exchange) implementation.

RFC 7636 - Proof Key for Code Exchange for OAuth 2.0 public clients.
Uses S256 challenge method (SHA-256 hash of the code verifier).
"""

from __future__ import annotations

import hashlib
import secrets
import time

from base64 import urlsafe_b64encode
from dataclasses import dataclass, field
from typing import Final


# RFC 7636 section 4.1: 43 to 128 characters from the unreserved set
_MIN_VERIFIER_LEN: Final[int] = 43
_MAX_VERIFIER_LEN: Final[int] = 128
_ALLOWED_CHARS: Final[str] = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"
)


def code_challenge_s256(verifier: str) -> str:
    """Compute the S256 code challenge for a verifier.

    Parameters
    ----------
    verifier : str
        The code verifier string.

    Returns
    -------
    str
        Base64url-encoded SHA-256 hash without padding.
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


@dataclass(frozen=True)
class PKCEAttempt:
    """One-time PKCE material for a single login attempt.

    Never persisted; discarded once the attempt resolves or is superseded.

    Attributes
    ----------
    verifier : str
        The code verifier (high-entropy random string).
    challenge : str
        The code challenge (base64url-encoded SHA-256 hash of verifier).
    redirect_uri : str
        Redirect URI the authorization request is bound to.
    state : str
        Opaque value echoed back by the provider on redirect.
    created_at : float
        Unix timestamp when the attempt was generated.
    method : str
        The challenge method, always "S256".
    """

    verifier: str = field(repr=False)
    challenge: str
    redirect_uri: str
    state: str = field(repr=False)
    created_at: float
    method: str = "S256"

    @classmethod
    def generate(cls, redirect_uri: str, length: int = 64) -> PKCEAttempt:
        """Generate a fresh verifier, challenge and state.

        Parameters
        ----------
        redirect_uri : str
            Callback URI for this attempt.
        length : int
            Verifier length in characters, 43-128 (default 64).

        Returns
        -------
        PKCEAttempt
            A new, unpredictable attempt.

        Raises
        ------
        ValueError
            If ``length`` is outside the range RFC 7636 allows.
        """
        if not _MIN_VERIFIER_LEN <= length <= _MAX_VERIFIER_LEN:
            msg = f"code verifier length must be {_MIN_VERIFIER_LEN}-{_MAX_VERIFIER_LEN} characters"
            raise ValueError(msg)
        verifier = "".join(secrets.choice(_ALLOWED_CHARS) for _ in range(length))
        return cls(
            verifier=verifier,
            challenge=code_challenge_s256(verifier),
            redirect_uri=redirect_uri,
            state=secrets.token_urlsafe(32),
            created_at=time.time(),
        )
