# Overview: Row-locking helper for status and payment writes.

from __future__ import annotations


def lock_for_update(query):
    """
    Lock the selected rows until the surrounding transaction ends.

    Status writes read-validate-write; the lock serialises concurrent
    actions on the same member, and populate_existing reloads rows already
    in the session so validation sees the stored status.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update().populate_existing()
