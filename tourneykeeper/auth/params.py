"""Extract auth redirect parameters from a callback location.

Providers send their parameters in different places depending on the flow
and on how the client routes: implicit-flow tokens arrive in a fragment that
may sit behind a hash route (``#/auth/callback#access_token=...``), PKCE codes
arrive in a query that may sit inside the hash route
(``#/auth/callback?code=...``) or in the real query string. Each source is an
extractor returning a partial result; the first non-empty value per field
wins, in extractor order.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Callable
from urllib.parse import parse_qs, unquote, urlsplit


@dataclass(frozen=True)
class AuthParams:
    access_token: str | None = None
    refresh_token: str | None = None
    code: str | None = None
    type: str | None = None
    error_description: str | None = None

    def merge(self, other: AuthParams) -> AuthParams:
        """Fill fields still empty here from ``other``."""
        missing = {
            f.name: getattr(other, f.name)
            for f in fields(self)
            if not getattr(self, f.name) and getattr(other, f.name)
        }
        return replace(self, **missing) if missing else self

    @property
    def is_empty(self) -> bool:
        return not any(getattr(self, f.name) for f in fields(self))


@dataclass(frozen=True)
class Location:
    """The parts of a callback URL the resolver looks at, without markers."""

    hash: str = ""
    search: str = ""

    @classmethod
    def from_href(cls, href: str) -> Location:
        parts = urlsplit(href or "")
        return cls(hash=parts.fragment, search=parts.query)

    @classmethod
    def from_parts(cls, hash: str | None = None, search: str | None = None) -> Location:
        return cls(hash=(hash or "").lstrip("#"), search=(search or "").lstrip("?"))


def _split_hash(hash_content: str) -> tuple[str, str]:
    """Split hash-route content into its (query, fragment) strings."""
    if not hash_content.startswith("/"):
        # A bare fragment with no client route carries the tokens directly.
        if "=" in hash_content:
            return "", hash_content
        return "", ""
    query_index = hash_content.find("?")
    fragment_index = hash_content.find("#", 1)
    if query_index != -1 and (fragment_index == -1 or query_index < fragment_index):
        after_query = hash_content[query_index + 1 :]
        query, _, fragment = after_query.partition("#")
        return query, fragment
    if fragment_index != -1:
        return "", hash_content[fragment_index + 1 :]
    return "", ""


def _first(values: dict[str, list[str]], key: str) -> str | None:
    for value in values.get(key, []):
        if value:
            return value
    return None


def _from_query_string(query: str, allow_code: bool = True) -> AuthParams:
    if not query:
        return AuthParams()
    values = parse_qs(query, keep_blank_values=False)
    error_description = _first(values, "error_description")
    return AuthParams(
        access_token=_first(values, "access_token"),
        refresh_token=_first(values, "refresh_token"),
        # PKCE codes only ever travel in a query string.
        code=_first(values, "code") if allow_code else None,
        type=_first(values, "type"),
        error_description=unquote(error_description) if error_description else None,
    )


def from_hash_fragment(location: Location) -> AuthParams:
    _, fragment = _split_hash(location.hash)
    return _from_query_string(fragment, allow_code=False)


def from_hash_query(location: Location) -> AuthParams:
    query, _ = _split_hash(location.hash)
    return _from_query_string(query)


def from_native_query(location: Location) -> AuthParams:
    return _from_query_string(location.search)


EXTRACTORS: list[Callable[[Location], AuthParams]] = [
    from_hash_fragment,
    from_hash_query,
    from_native_query,
]


def resolve_params(location: Location) -> AuthParams:
    """Fold every extractor over the location, earliest source first."""
    result = AuthParams()
    for extractor in EXTRACTORS:
        result = result.merge(extractor(location))
    return result


def resolve_href(href: str) -> AuthParams:
    return resolve_params(Location.from_href(href))
