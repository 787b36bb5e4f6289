"""Binding between gateway uniq ids and business customer ids."""

from __future__ import annotations

import threading
from collections.abc import Iterable

__all__ = ["Binder"]


class Binder:
    """Maps each customer id to many uniq ids and each uniq id to one customer id."""

    def __init__(self) -> None:
        self._customer_to_uniq: dict[str, set[str]] = {}
        self._uniq_to_customer: dict[str, str] = {}
        self._lock = threading.Lock()

    def get_customer_ids(self) -> list[str]:
        """Return every bound customer id."""
        with self._lock:
            return list(self._customer_to_uniq)

    def get_uniq_ids_by_customer_id(self, customer_id: str) -> list[str] | None:
        """Return the uniq ids bound to ``customer_id``, or None if it is unknown."""
        with self._lock:
            uniq_ids = self._customer_to_uniq.get(customer_id)
            return None if uniq_ids is None else list(uniq_ids)

    def get_uniq_ids_by_customer_ids(
        self, customer_ids: Iterable[str]
    ) -> dict[str, list[str]]:
        """Return a mapping of each known customer id to its uniq ids."""
        with self._lock:
            return {
                customer_id: list(self._customer_to_uniq[customer_id])
                for customer_id in customer_ids
                if customer_id in self._customer_to_uniq
            }

    def get_customer_ids_by_uniq_ids(self, uniq_ids: Iterable[str]) -> list[str]:
        """Return the distinct customer ids bound to any of ``uniq_ids``."""
        with self._lock:
            found = {
                self._uniq_to_customer[uniq_id]
                for uniq_id in uniq_ids
                if uniq_id in self._uniq_to_customer
            }
        return list(found)

    def get_customer_id_to_uniq_ids_list(
        self, uniq_ids: Iterable[str]
    ) -> dict[str, list[str]]:
        """Group the bound ones among ``uniq_ids`` by their customer id, keeping order."""
        result: dict[str, list[str]] = {}
        with self._lock:
            for uniq_id in uniq_ids:
                customer_id = self._uniq_to_customer.get(uniq_id)
                if customer_id is not None:
                    result.setdefault(customer_id, []).append(uniq_id)
        return result

    def count_customer_ids_by_uniq_ids(self, uniq_ids: Iterable[str]) -> int:
        """Return how many distinct customer ids are bound to ``uniq_ids``."""
        return len(self.get_customer_ids_by_uniq_ids(uniq_ids))

    def __len__(self) -> int:
        with self._lock:
            return len(self._customer_to_uniq)

    def set(self, uniq_id: str, customer_id: str) -> None:
        """Bind ``uniq_id`` to ``customer_id``, replacing any earlier binding."""
        with self._lock:
            current = self._uniq_to_customer.get(uniq_id)
            if current is not None:
                if current == customer_id:
                    return
                self._unlink(current, uniq_id)
            self._uniq_to_customer[uniq_id] = customer_id
            self._customer_to_uniq.setdefault(customer_id, set()).add(uniq_id)

    def del_uniq_id(self, uniq_id: str) -> None:
        """Remove the binding of ``uniq_id``, if any."""
        with self._lock:
            customer_id = self._uniq_to_customer.pop(uniq_id, None)
            if customer_id is not None:
                self._unlink(customer_id, uniq_id)

    def _unlink(self, customer_id: str, uniq_id: str) -> None:
        uniq_ids = self._customer_to_uniq.get(customer_id)
        if uniq_ids is None:
            return
        uniq_ids.discard(uniq_id)
        if not uniq_ids:
            del self._customer_to_uniq[customer_id]