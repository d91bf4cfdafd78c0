"""Address and domain helpers used to derive rule keys."""

from .parsing import (
    DomainParser,
    DotCountDomainParser,
    domain_of,
    has_subdomain,
    primary_domain,
    split_address,
)

__all__ = [
    "DomainParser",
    "DotCountDomainParser",
    "domain_of",
    "has_subdomain",
    "primary_domain",
    "split_address",
]
