"""
Rotating credential pool.

Hands out credentials round-robin over the currently valid subset,
quarantines credentials after repeated authentication rejections and
lazily reinstates them once their cooldown has elapsed.
"""

import asyncio
import logging
import os
import threading
import time
from typing import Any, Callable, Iterable, Optional, Protocol

from ..clients.search_client import is_auth_rejection
from ..config import CredentialConfig
from ..normalizer.schemas import CredentialRecord
from ..utils.exceptions import TransportError

logger = logging.getLogger(__name__)


class CredentialProber(Protocol):
    """Anything that can test a credential against the live service."""

    async def probe(self, secret: str) -> tuple[int, Optional[dict[str, Any]]]:
        ...


def mask_secret(secret: str) -> str:
    """Show the first and last five characters of a secret, masking the rest."""
    if len(secret) <= 10:
        return "*" * len(secret)
    return secret[:5] + "*" * (len(secret) - 10) + secret[-5:]


def load_secrets_from_env(
    prefix: str,
    pool_name: str,
    fallback_prefix: Optional[str] = None,
    environ: Optional[dict[str, str]] = None,
) -> list[tuple[str, str]]:
    """
    Collect (id, secret) pairs from environment variables.

    Reads ``PREFIX`` (id ``<pool>_single``), then ``PREFIX_1``,
    ``PREFIX_2``, ... up to the first missing index (ids ``<pool>_<n>``).
    When nothing was found and a different fallback prefix is given,
    ``FALLBACK_1..n`` is read instead (ids ``<pool>_fallback_<n>``).
    """
    env = os.environ if environ is None else environ
    found: list[tuple[str, str]] = []

    single = (env.get(prefix) or "").strip()
    if single:
        found.append((f"{pool_name}_single", single))

    index = 1
    while True:
        value = (env.get(f"{prefix}_{index}") or "").strip()
        if not value:
            break
        found.append((f"{pool_name}_{index}", value))
        index += 1

    if not found and fallback_prefix and fallback_prefix != prefix:
        index = 1
        while True:
            value = (env.get(f"{fallback_prefix}_{index}") or "").strip()
            if not value:
                break
            found.append((f"{pool_name}_fallback_{index}", value))
            index += 1

    return found


class CredentialPool:
    """
    Round-robin pool of interchangeable credentials.

    Selection walks the valid subset with a cursor, so rotation is stable
    while the subset does not change and an invalidated credential is
    skipped on the very next call. Invalid records whose cooldown has
    elapsed rejoin the valid subset when it is next computed; there is no
    background timer.

    State Transitions:
        valid → valid: rejection below the threshold (counters grow)
        valid → invalid: consecutive_failures reaches max_failures
        invalid → valid: mark_valid, or cooldown elapsed at selection time

    Attributes:
        name: Pool identifier (search, detail)
        max_failures: Consecutive rejections before a record is invalidated
        cooldown: Seconds an invalid record waits before reinstatement

    Example:
        >>> pool = CredentialPool("search")
        >>> pool.load(["cookie-a", "cookie-b"])
        >>> pool.next_valid()
        'cookie-a'
        >>> pool.mark_invalid("cookie-a", "HTTP 401")
    """

    def __init__(
        self,
        name: str,
        max_failures: int = 3,
        cooldown: float = 600.0,
        prober: Optional[CredentialProber] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.max_failures = max_failures
        self.cooldown = cooldown
        self.prober = prober
        self._clock = clock

        self._records: list[CredentialRecord] = []
        self._by_secret: dict[str, CredentialRecord] = {}
        self._cursor = 0

        # Thread safety
        self._lock = threading.Lock()

        # Statistics
        self._stats = {
            "selections": 0,
            "empty_selections": 0,
            "invalidations": 0,
            "reinstatements": 0,
            "probes": 0,
        }

    @classmethod
    def from_env(
        cls,
        prefix: str,
        pool_name: str,
        fallback_prefix: Optional[str] = None,
        prober: Optional[CredentialProber] = None,
        environ: Optional[dict[str, str]] = None,
        **kwargs,
    ) -> "CredentialPool":
        """
        Build a pool from ``PREFIX`` / ``PREFIX_n`` environment variables.

        Args:
            prefix: Environment variable prefix (e.g. XHS_COOKIE)
            pool_name: Pool identifier used in record ids
            fallback_prefix: Prefix read when the pool's own variables are empty
            prober: Live credential tester
            environ: Mapping to read instead of os.environ
            **kwargs: Passed to the constructor (max_failures, cooldown, clock)
        """
        kwargs.setdefault("max_failures", CredentialConfig.MAX_FAILURES)
        kwargs.setdefault("cooldown", CredentialConfig.COOLDOWN_SECONDS)
        pool = cls(pool_name, prober=prober, **kwargs)
        pool.load_records(load_secrets_from_env(prefix, pool_name, fallback_prefix, environ))
        if pool.size:
            logger.info(f"Loaded {pool.size} credentials into pool '{pool_name}'")
        else:
            logger.warning(f"No credentials configured for pool '{pool_name}' ({prefix})")
        return pool

    def load(self, secrets: Iterable[str]) -> None:
        """Replace the pool contents with fresh records for ``secrets``."""
        self.load_records((f"{self.name}_{i}", s) for i, s in enumerate(secrets, start=1))

    def load_records(self, pairs: Iterable[tuple[str, str]]) -> None:
        """Replace the pool contents with fresh records for (id, secret) pairs."""
        records = []
        seen = set()
        for record_id, secret in pairs:
            if not secret or not secret.strip():
                logger.warning(f"Blank credential {record_id} ignored in pool '{self.name}'")
                continue
            record = CredentialRecord(id=record_id, secret=secret)
            if record.secret in seen:
                logger.warning(f"Duplicate credential {record_id} ignored in pool '{self.name}'")
                continue
            seen.add(record.secret)
            records.append(record)

        with self._lock:
            self._records = records
            self._by_secret = {r.secret: r for r in records}
            self._cursor = 0

    @property
    def size(self) -> int:
        return len(self._records)

    def _valid_subset(self, now: float) -> list[CredentialRecord]:
        """Valid records in load order; reinstates invalid ones past cooldown. Caller holds the lock."""
        subset = []
        for record in self._records:
            if not record.valid and now - record.last_validated > self.cooldown:
                record.valid = True
                record.consecutive_failures = 0
                self._stats["reinstatements"] += 1
                logger.info(f"Credential {record.id} reinstated after cooldown")
            if record.valid:
                subset.append(record)
        return subset

    def next_valid(self) -> Optional[str]:
        """
        Select the next credential in rotation.

        Returns:
            A secret, or None when no credential is currently usable
        """
        with self._lock:
            now = self._clock()
            subset = self._valid_subset(now)
            if not subset:
                self._stats["empty_selections"] += 1
                return None

            record = subset[self._cursor % len(subset)]
            self._cursor = (self._cursor + 1) % len(subset)
            record.last_used = now
            self._stats["selections"] += 1

        logger.debug(f"Selected credential {record.id} from pool '{self.name}'")
        return record.secret

    def record_id(self, secret: str) -> Optional[str]:
        record = self._by_secret.get(secret)
        return record.id if record else None

    def mark_invalid(self, secret: str, reason: str = "") -> None:
        """
        Record an authentication rejection.

        The record is invalidated once ``consecutive_failures`` reaches
        ``max_failures``. The rejection time is stored as ``last_validated``
        so the cooldown counts from the latest rejection.
        """
        with self._lock:
            record = self._by_secret.get(secret)
            if record is None:
                logger.warning(f"mark_invalid called for unknown credential in pool '{self.name}'")
                return

            record.failure_count += 1
            record.consecutive_failures += 1
            record.last_validated = self._clock()

            invalidated = record.valid and record.consecutive_failures >= self.max_failures
            if invalidated:
                record.valid = False
                self._stats["invalidations"] += 1
            failures = record.consecutive_failures

        if invalidated:
            logger.warning(
                f"Credential {record.id} invalidated after {failures} consecutive failures",
                extra={"pool": self.name, "reason": reason},
            )
        else:
            logger.info(
                f"Credential {record.id} rejected ({failures}/{self.max_failures}): {reason}",
                extra={"pool": self.name},
            )

    def mark_valid(self, secret: str) -> None:
        """Record a confirmed success: the credential is valid with a clean streak."""
        with self._lock:
            record = self._by_secret.get(secret)
            if record is None:
                logger.warning(f"mark_valid called for unknown credential in pool '{self.name}'")
                return
            was_invalid = not record.valid
            record.valid = True
            record.consecutive_failures = 0
            record.last_validated = self._clock()

        if was_invalid:
            logger.info(f"Credential {record.id} restored to valid")

    async def validate(self, secret: str, prober: Optional[CredentialProber] = None) -> bool:
        """
        Probe a credential against the live service.

        Args:
            secret: Credential to test
            prober: Overrides the pool's prober for this call

        Returns:
            True when the service accepted it; False when it was rejected or
            the probe was inconclusive (network error, unexpected status)
        """
        prober = prober or self.prober
        if prober is None:
            raise RuntimeError(f"Pool '{self.name}' has no prober configured")

        self._stats["probes"] += 1
        record_id = self.record_id(secret) or "unknown"
        try:
            status, payload = await prober.probe(secret)
        except (TransportError, asyncio.TimeoutError) as e:
            logger.warning(f"Probe for {record_id} inconclusive: {e}")
            return False

        if is_auth_rejection(status, payload):
            reason = (payload or {}).get("msg") or f"HTTP {status}"
            self.mark_invalid(secret, f"probe rejected: {reason}")
            return False

        if status == 200:
            self.mark_valid(secret)
            return True

        logger.warning(f"Probe for {record_id} inconclusive: HTTP {status}")
        return False

    async def validate_all(
        self,
        delay: float = CredentialConfig.VALIDATE_ALL_DELAY_SECONDS,
        sleep: Callable[[float], Any] = asyncio.sleep,
        prober: Optional[CredentialProber] = None,
    ) -> dict[str, bool]:
        """
        Probe every credential sequentially with a pause between probes.

        A failing probe is logged and counted as False; it never stops
        the remaining probes.

        Returns:
            Mapping of record id to probe result
        """
        results = {}
        secrets = [record.secret for record in self._records]
        for index, secret in enumerate(secrets):
            record_id = self.record_id(secret)
            try:
                results[record_id] = await self.validate(secret, prober=prober)
            except Exception as e:
                logger.error(f"Probe for {record_id} failed: {e}", exc_info=True)
                results[record_id] = False
            if index < len(secrets) - 1 and delay > 0:
                await sleep(delay)
        return results

    def records_info(self) -> list[dict[str, Any]]:
        """Per-record state with masked secrets."""
        with self._lock:
            return [
                {
                    **record.model_dump(exclude={"secret"}),
                    "masked": mask_secret(record.secret),
                }
                for record in self._records
            ]

    def get_statistics(self) -> dict[str, Any]:
        """
        Get pool statistics.

        Valid counts reflect stored state; cooldown reinstatement happens
        only at selection time.
        """
        with self._lock:
            valid = sum(1 for record in self._records if record.valid)
            return {
                "pool": self.name,
                "total": len(self._records),
                "valid": valid,
                "invalid": len(self._records) - valid,
                **self._stats,
            }

    def __repr__(self) -> str:
        stats = self.get_statistics()
        return (
            f"CredentialPool(name={self.name!r}, total={stats['total']}, "
            f"valid={stats['valid']}, max_failures={self.max_failures})"
        )
