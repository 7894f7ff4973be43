"""
Storage Account Ranking & Resource Shuffling

Orders resources so that traffic is spread across storage accounts and
unreliable accounts are progressively deprioritized without being excluded.

RANKING:
--------
Each account keeps a short history of time buckets (default 6 buckets of
10 seconds). Every reported result lands in the newest bucket. The rank is a
recency-weighted, Laplace-smoothed success rate:

    weight(bucket) = bucket_count - age        (newest bucket weighs most)
    S = sum(weight * successes), T = sum(weight * total)
    rank = (S + 1) / (T + 2), clamped to [RANK_FLOOR, 1.0]

A fresh account ranks 0.5; a success raises the rank and a failure lowers it.
Buckets older than the window are dropped, so a failing account drifts back
to 0.5 and gets traffic again once it stops failing.

SHUFFLING:
----------
Resources are grouped by account and each account's list is shuffled once per
snapshot. Accounts are sorted by rank (random tie-break) and the per-account
lists are interleaved index by index: the first resource of every account in
rank order, then the second, and so on. A caller exhausting N resources
touches N different accounts before repeating one.
"""

import random
import threading
import time
from collections import deque
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import TypeVar

from ingestion_broker.core.config.constants import (
    RANK_CEILING,
    RANK_FLOOR,
    RANKING_BUCKET_COUNT,
    RANKING_BUCKET_DURATION_SECONDS,
)
from ingestion_broker.resources.models import ResourceWithSas

T = TypeVar("T")
R = TypeVar("R", bound=ResourceWithSas)


@dataclass
class _Bucket:
    success_count: int = 0
    total_count: int = 0


class RankedStorageAccount:
    """Reliability history and rank of one storage account."""

    def __init__(
        self,
        account_name: str,
        bucket_count: int = RANKING_BUCKET_COUNT,
        bucket_duration: float = RANKING_BUCKET_DURATION_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.account_name = account_name
        self._bucket_count = bucket_count
        self._bucket_duration = bucket_duration
        self._clock = clock
        self._buckets: deque[_Bucket] = deque()  # newest first
        self._last_action = clock()
        self._lock = threading.Lock()

    def add_result(self, success: bool) -> None:
        with self._lock:
            self._adjust_for_time_passed()
            bucket = self._buckets[0]
            bucket.total_count += 1
            if success:
                bucket.success_count += 1

    def _adjust_for_time_passed(self) -> None:
        now = self._clock()
        if not self._buckets:
            self._buckets.appendleft(_Bucket())
            self._last_action = now
            return

        buckets_to_create = int((now - self._last_action) // self._bucket_duration)
        if buckets_to_create <= 0:
            return
        if buckets_to_create >= self._bucket_count:
            self._buckets.clear()
            self._buckets.appendleft(_Bucket())
        else:
            for _ in range(buckets_to_create):
                self._buckets.appendleft(_Bucket())
                if len(self._buckets) > self._bucket_count:
                    self._buckets.pop()
        self._last_action = now

    @property
    def rank(self) -> float:
        with self._lock:
            self._adjust_for_time_passed()
            weighted_success = 0.0
            weighted_total = 0.0
            for age, bucket in enumerate(self._buckets):
                weight = self._bucket_count - age
                weighted_success += weight * bucket.success_count
                weighted_total += weight * bucket.total_count
        rank = (weighted_success + 1) / (weighted_total + 2)
        return min(RANK_CEILING, max(RANK_FLOOR, rank))

    def __repr__(self) -> str:
        return f"RankedStorageAccount(account_name={self.account_name!r}, rank={self.rank:.3f})"


class RankedStorageAccountSet:
    """
    Table of ranked accounts shared by every snapshot.

    Accounts are added when first seen and are kept across refreshes, so a new
    snapshot does not reset what was learned about an account.
    """

    def __init__(
        self,
        bucket_count: int = RANKING_BUCKET_COUNT,
        bucket_duration: float = RANKING_BUCKET_DURATION_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ):
        self._bucket_count = bucket_count
        self._bucket_duration = bucket_duration
        self._clock = clock
        self._rng = rng or random.Random()
        self._accounts: dict[str, RankedStorageAccount] = {}
        self._lock = threading.Lock()

    def add_account(self, account_name: str) -> RankedStorageAccount:
        with self._lock:
            account = self._accounts.get(account_name)
            if account is None:
                account = RankedStorageAccount(
                    account_name, self._bucket_count, self._bucket_duration, self._clock
                )
                self._accounts[account_name] = account
            return account

    def get_account(self, account_name: str) -> RankedStorageAccount | None:
        with self._lock:
            return self._accounts.get(account_name)

    def add_result(self, account_name: str, success: bool) -> float:
        """Record a result for ``account_name`` and return its new rank."""
        account = self.add_account(account_name)
        account.add_result(success)
        return account.rank

    def get_rank(self, account_name: str) -> float | None:
        account = self.get_account(account_name)
        return account.rank if account is not None else None

    def get_ranked_shuffled_accounts(self, account_names: Iterable[str] | None = None) -> list[RankedStorageAccount]:
        """
        Accounts sorted by rank, highest first; equal ranks in random order.

        Args:
            account_names: restrict to these accounts (added if unknown)
        """
        if account_names is None:
            with self._lock:
                accounts = list(self._accounts.values())
        else:
            accounts = [self.add_account(name) for name in dict.fromkeys(account_names)]

        self._rng.shuffle(accounts)
        # sorted() is stable, so the shuffle is the tie-break
        return sorted(accounts, key=lambda a: a.rank, reverse=True)

    def __len__(self) -> int:
        return len(self._accounts)


def group_and_shuffle(resources: Iterable[R], rng: random.Random | None = None) -> dict[str, tuple[R, ...]]:
    """Group resources by account name and shuffle each account's list once."""
    rng = rng or random.Random()
    grouped: dict[str, list[R]] = {}
    for resource in resources:
        grouped.setdefault(resource.account_name, []).append(resource)
    for group in grouped.values():
        rng.shuffle(group)
    return {name: tuple(group) for name, group in grouped.items()}


def round_robin_nested_list(nested: Sequence[Sequence[T]]) -> list[T]:
    """
    Interleave lists index by index.

    [[a1, a2], [b1], [c1, c2, c3]] -> [a1, b1, c1, a2, c2, c3]
    """
    longest = max((len(inner) for inner in nested), default=0)
    return [inner[i] for i in range(longest) for inner in nested if i < len(inner)]


def get_shuffled_resources(
    ranked_accounts: Sequence[RankedStorageAccount],
    resources_by_account: Mapping[str, Sequence[R]],
) -> list[R]:
    """Interleave each ranked account's resources; accounts without resources are skipped."""
    valid = [
        resources_by_account[account.account_name]
        for account in ranked_accounts
        if resources_by_account.get(account.account_name)
    ]
    return round_robin_nested_list(valid)
