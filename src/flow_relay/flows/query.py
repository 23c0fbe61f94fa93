"""Gmail search query construction for flow filters."""

from __future__ import annotations

from typing import List

ATTACHMENT_TERM = "has:attachment"


def construct_query(**query_terms) -> str:
    """
    Constructs a Gmail search query from keyword arguments, each and'd.

    Lists are or'd. ``newer_than`` takes a ``(number, unit)`` pair and
    ``attachment`` a bool.

    Keyword Arguments:
        raw, sender, attachment, newer_than
    """
    terms = []
    for key, val in query_terms.items():
        if val is None or val is False or val == [] or val == "":
            continue

        query_fn = _TERMS[key]
        if key == "newer_than":
            term = query_fn(*val)
        elif isinstance(val, list):
            term = _or([query_fn(v) for v in val])
        elif isinstance(val, bool):
            term = query_fn()
        else:
            term = query_fn(val)
        terms.append(term)

    return _and(terms)


def split_senders(senders: str | None) -> List[str]:
    """Split a comma-separated sender filter, dropping blanks."""
    if not senders:
        return []
    return [s.strip() for s in senders.split(",") if s.strip()]


def build_search_query(
    senders: str | None = None,
    email_filter: str | None = None,
    fallback_sender: str | None = None,
    recency_days: int = 7,
) -> str:
    """Resolve a flow's mail filter into a bounded Gmail search query.

    ``senders`` wins over the legacy ``email_filter``; with neither, mail from
    ``fallback_sender`` is searched. An attachment predicate and a
    ``newer_than`` bound are always and'd in.
    """
    sender_list = split_senders(senders)
    legacy = (email_filter or "").strip()

    raw = None
    if sender_list:
        sender = sender_list
    elif legacy:
        sender = None
        raw = legacy
    else:
        sender = fallback_sender or None

    query = construct_query(
        raw=raw,
        sender=sender,
        attachment=ATTACHMENT_TERM not in legacy if raw else True,
        newer_than=None if raw and "newer_than:" in raw else (recency_days, "day"),
    )
    return query


def _and(queries: List[str]) -> str:
    if not queries:
        return ""
    if len(queries) == 1:
        return queries[0]
    return f'({" ".join(queries)})'


def _or(queries: List[str]) -> str:
    if len(queries) == 1:
        return queries[0]
    return "{" + " ".join(queries) + "}"


def _raw(query: str) -> str:
    return query


def _sender(sender: str) -> str:
    return f"from:{sender}"


def _attachment() -> str:
    return ATTACHMENT_TERM


def _newer_than(number: int, unit: str) -> str:
    return f"newer_than:{number}{unit[0]}"


_TERMS = {
    "raw": _raw,
    "sender": _sender,
    "attachment": _attachment,
    "newer_than": _newer_than,
}
