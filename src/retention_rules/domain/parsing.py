"""Sender domain parsing.

The primary domain is derived by counting dots: a host with fewer than two dots
is its own primary domain, otherwise the last two labels are used
(``custcomm.icicibank.com`` -> ``icicibank.com``).

Known limitation: no public suffix list is consulted, so multi-label suffixes
are mis-parsed (``mail.example.co.uk`` -> ``co.uk``). Callers depend on the
`DomainParser` protocol so a suffix-aware resolver can be swapped in.
"""

from __future__ import annotations

from typing import Protocol


class DomainParser(Protocol):
    """Derives rule keys from addresses and hosts."""

    def domain_of(self, address: str) -> str: ...

    def primary_domain(self, host: str) -> str: ...

    def has_subdomain(self, host: str) -> bool: ...


def domain_of(address: str) -> str:
    """Return the lowercased host part of an email address.

    Input without an ``@`` is returned as-is (lowercased).
    """

    addr = (address or "").strip().lower()
    if "@" in addr:
        return addr.split("@", 1)[1]
    return addr


def primary_domain(host: str) -> str:
    h = (host or "").strip().lower()
    if h.count(".") < 2:
        return h
    return ".".join(h.rsplit(".", 2)[-2:])


def has_subdomain(host: str) -> bool:
    return (host or "").strip().count(".") >= 2


class DotCountDomainParser:
    """Default parser backed by the module-level dot-counting functions."""

    def domain_of(self, address: str) -> str:
        return domain_of(address)

    def primary_domain(self, host: str) -> str:
        return primary_domain(host)

    def has_subdomain(self, host: str) -> bool:
        return has_subdomain(host)


def split_address(address: str, parser: DomainParser | None = None) -> tuple[str, str | None]:
    """Split a sender address into (primary domain, subdomain).

    The subdomain is the full host when it has a subdomain component, else None.
    """

    p = parser or DotCountDomainParser()
    host = p.domain_of(address)
    if p.has_subdomain(host):
        return p.primary_domain(host), host
    return p.primary_domain(host), None
