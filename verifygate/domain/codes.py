"""
Verification code manager - One-time code lifecycle.

Codes are bound to a claim identity (the pending account id). At most one
code exists per identity; issuing replaces it. Expiry is evaluated lazily
against the clock whenever a code is touched, so no timer task exists per
code. Each issue sweeps codes that have expired since, and a consumed code
is dropped at once. The manager keeps no storage handle: the audit intent
for an issued code is handed back to the caller to persist.

Verification outcomes for an identity:
    no code / consumed / past expires_at  -> EXPIRED
    attempts already used up              -> ATTEMPTS_EXHAUSTED
    match                                 -> OK (code consumed)
    mismatch, attempts remain             -> MISMATCH
    mismatch, last attempt                -> ATTEMPTS_EXHAUSTED

Security Design:
- Codes come from the ``secrets`` module.
- Comparison uses ``secrets.compare_digest`` for constant-time behavior.
- Check-then-consume happens inside a single lock acquisition, so a code
  can never verify OK twice.
"""

import logging
import secrets
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from .ports import SYSTEM_ACTOR, AuditAction, AuditRecord, CodeCheck, utcnow

logger = logging.getLogger(__name__)


@dataclass
class VerificationCode:
    """Mutable per-identity code state, owned by the manager."""

    claim_identity: str
    code: str
    issued_at: datetime
    expires_at: datetime
    remaining_attempts: int
    consumed: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_active(self, now: datetime) -> bool:
        return not self.consumed and not self.is_expired(now) and self.remaining_attempts > 0


@dataclass(frozen=True)
class IssuedCode:
    """A freshly minted code plus the audit intent describing it."""

    claim_identity: str
    code: str
    issued_at: datetime
    expires_at: datetime

    @property
    def audit_intent(self) -> AuditRecord:
        return AuditRecord(
            timestamp=self.issued_at,
            actor=SYSTEM_ACTOR,
            subject=self.claim_identity,
            action=AuditAction.CODE_ISSUED,
            detail=f"expires_at={self.expires_at.isoformat()}",
        )


class VerificationCodeManager:
    """Issue, verify and expire one-time verification codes."""

    def __init__(
        self,
        *,
        ttl: timedelta = timedelta(minutes=10),
        code_length: int = 6,
        max_attempts: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if code_length < 1:
            raise ValueError("code_length must be positive")
        if max_attempts < 1:
            raise ValueError("max_attempts must be positive")
        self._ttl = ttl
        self._code_length = code_length
        self._max_attempts = max_attempts
        self._clock = clock
        self._codes: dict[str, VerificationCode] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def issue(self, claim_identity: str) -> IssuedCode:
        """
        Mint a code for an identity, replacing any prior code.

        Args:
            claim_identity: Account id the code is bound to

        Returns:
            IssuedCode with the code value, expiry and audit intent
        """
        code = self._generate_code()
        now = self._clock()
        entry = VerificationCode(
            claim_identity=claim_identity,
            code=code,
            issued_at=now,
            expires_at=now + self._ttl,
            remaining_attempts=self._max_attempts,
        )
        with self._lock:
            swept = self._sweep(now)
            replaced = self._codes.get(claim_identity)
            self._codes[claim_identity] = entry

        if swept:
            logger.debug("Swept %d expired verification code(s)", swept)

        if replaced is not None and replaced.is_active(now):
            logger.info("Replaced active verification code for %s", claim_identity)
        return IssuedCode(
            claim_identity=claim_identity,
            code=code,
            issued_at=entry.issued_at,
            expires_at=entry.expires_at,
        )

    def verify(self, claim_identity: str, submitted_code: str) -> CodeCheck:
        """
        Check a submitted code and consume it on success.

        Args:
            claim_identity: Account id the code was issued for
            submitted_code: Code value supplied by the claimant

        Returns:
            CodeCheck indicating success or the specific failure
        """
        with self._lock:
            now = self._clock()
            entry = self._codes.get(claim_identity)

            # Always compare so the response time does not reveal whether a
            # code exists for this identity.
            stored = entry.code if entry is not None else "0" * self._code_length
            matched = secrets.compare_digest(stored.encode(), submitted_code.encode())

            if entry is None or entry.consumed:
                return CodeCheck.EXPIRED
            if entry.is_expired(now):
                del self._codes[claim_identity]
                return CodeCheck.EXPIRED
            if entry.remaining_attempts <= 0:
                return CodeCheck.ATTEMPTS_EXHAUSTED

            entry.remaining_attempts -= 1
            if matched:
                entry.consumed = True
                del self._codes[claim_identity]
                return CodeCheck.OK
            if entry.remaining_attempts <= 0:
                logger.warning("Verification attempts exhausted for %s", claim_identity)
                return CodeCheck.ATTEMPTS_EXHAUSTED
            return CodeCheck.MISMATCH

    def invalidate(self, claim_identity: str) -> None:
        """Forget any code for an identity (e.g. the account was removed)."""
        with self._lock:
            self._codes.pop(claim_identity, None)

    def purge_expired(self) -> int:
        """Drop codes that can no longer verify. Returns the number dropped."""
        with self._lock:
            now = self._clock()
            dead = [k for k, v in self._codes.items() if not v.is_active(now)]
            for key in dead:
                del self._codes[key]
        if dead:
            logger.debug("Purged %d dead verification code(s)", len(dead))
        return len(dead)

    def __len__(self) -> int:
        """Number of entries held, including exhausted codes awaiting expiry."""
        with self._lock:
            return len(self._codes)

    def active_count(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for v in self._codes.values() if v.is_active(now))

    def _sweep(self, now: datetime) -> int:
        # Exhausted codes are kept until expiry so they keep refusing the
        # correct value.
        dead = [k for k, v in self._codes.items() if v.consumed or v.is_expired(now)]
        for key in dead:
            del self._codes[key]
        return len(dead)

    def _generate_code(self) -> str:
        """
        Generate a cryptographically secure decimal code.

        Returns string to preserve leading zeros.
        """
        return "".join(secrets.choice("0123456789") for _ in range(self._code_length))
