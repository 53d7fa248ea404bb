"""Id-based merge of server deltas into the local replica."""

from __future__ import annotations

from collections.abc import Collection, Iterable
from typing import Any

Record = dict[str, Any]


def is_tombstone(record: Record) -> bool:
    return bool(record.get("deleted_at"))


def active_records(records: Iterable[Record]) -> list[Record]:
    """Records that are not soft-deleted."""
    return [record for record in records if not is_tombstone(record)]


def upsert_by_id(records: list[Record], record: Record) -> list[Record]:
    """Replace the record with the same id in place, or append it."""
    merged = list(records)
    for index, existing in enumerate(merged):
        if existing.get("id") == record["id"]:
            merged[index] = record
            return merged
    merged.append(record)
    return merged


def merge_by_id(
    local: Iterable[Record],
    incoming: Iterable[Record],
    keep_local_ids: Collection[str] = (),
) -> list[Record]:
    """Merge a server delta into local records; the server wins per id.

    Local records whose id is absent from ``incoming`` are kept unchanged and in
    place.  Server records replace local ones with the same id, except for ids in
    ``keep_local_ids`` (edited locally while the request was in flight; they go up
    with the next sync).  Records new to this replica are appended in server order.
    If ``incoming`` repeats an id, the last occurrence wins.
    """
    server_by_id: dict[str, Record] = {}
    for record in incoming:
        server_by_id[record["id"]] = record

    merged: list[Record] = []
    seen: set[str] = set()
    for record in local:
        record_id = record.get("id")
        seen.add(record_id)
        if record_id in server_by_id and record_id not in keep_local_ids:
            merged.append(server_by_id[record_id])
        else:
            merged.append(record)

    for record_id, record in server_by_id.items():
        if record_id not in seen:
            merged.append(record)
    return merged
