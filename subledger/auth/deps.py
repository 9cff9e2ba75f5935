from __future__ import annotations

from collections import deque
from typing import Deque, Iterable, Optional, Protocol, Set

from subledger.core.errors import Unauthorized

# Most recent authorizations kept for inspection.
AUTH_LOG_SIZE = 64


class AuthOracle(Protocol):
    def authorize(self, principal: str) -> None:
        """Return if `principal` authorized the current operation, raise Unauthorized otherwise."""
        ...


class SignerAuthOracle:
    """
    Authorizes the principals that signed the current invocation.

    The host sets the signer set per call (`signed_by`), which also starts a
    fresh `authorized` log. The log holds the most recent successful checks
    only, so a long-lived oracle does not grow with traffic.
    """

    def __init__(self, signers: Optional[Iterable[str]] = None) -> None:
        self._signers: Set[str] = set(signers or ())
        self.authorized: Deque[str] = deque(maxlen=AUTH_LOG_SIZE)

    def signed_by(self, *principals: str) -> "SignerAuthOracle":
        self._signers = set(principals)
        self.authorized.clear()
        return self

    def authorize(self, principal: str) -> None:
        if not principal or principal not in self._signers:
            raise Unauthorized(f"{principal or '<anonymous>'} did not authorize this operation")
        self.authorized.append(principal)


class AllowAllAuthOracle(SignerAuthOracle):
    """Dev / test oracle: every principal is considered to have signed."""

    def authorize(self, principal: str) -> None:
        if not principal:
            raise Unauthorized("<anonymous> did not authorize this operation")
        self.authorized.append(principal)
