"""
Domain policy — decides whether a Common Name and DNS SANs fit a role.

Domain layer — PURE BUSINESS LOGIC. No side effects, no I/O.

Every candidate name (the CN and each SAN) resolves to exactly one
DomainMatch after being compared against every allowed domain of the role:

  ALLOWED           suffix match, and exact or subdomains permitted
  SUBDOMAIN_DENIED  suffix match, but a subdomain of a role that forbids them
  DOMAIN_DENIED     no allowed domain is a suffix of the name

The request as a whole:
  1. CN denied                  → fail with the CN's reason
  2. every SAN evaluated        → the LAST denied SAN's reason is kept
  3. any SAN denied             → fail with that reason
  4. no SAN equal to the CN     → fail (RFC 2818 consistency)
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum

from railway import ErrorCode
from railway.result import Result

from cert_broker.domain.models import Role, ValidatedIdentity

WILDCARD_DOMAIN = "*"

COMMON_NAME_NOT_ALLOWED = "common name not allowed for role"
SUBDOMAINS_NOT_ALLOWED = "sub-domains not allowed for role"
SAN_NOT_ALLOWED = "subject alternative name {san} not allowed for provided role"
SAN_CN_MISMATCH = (
    "at least one DNS SAN is required to match the supplied Common Name "
    "for RFC 2818 compliance"
)


class DomainMatch(Enum):
    """Outcome for one candidate name. Declared from best to worst."""

    ALLOWED = 0
    SUBDOMAIN_DENIED = 1
    DOMAIN_DENIED = 2


def match_domain(candidate: str, domain: str, allow_subdomains: bool) -> DomainMatch:
    """Compare one candidate against one allowed domain."""
    if domain == WILDCARD_DOMAIN:
        return DomainMatch.ALLOWED
    if not candidate.endswith(domain):
        return DomainMatch.DOMAIN_DENIED
    if candidate == domain or allow_subdomains:
        return DomainMatch.ALLOWED
    return DomainMatch.SUBDOMAIN_DENIED


def evaluate_candidate(candidate: str, role: Role) -> DomainMatch:
    """
    Best outcome for `candidate` across all of the role's allowed domains.

    A later domain may allow what an earlier one only half-matched, so all
    domains are compared before settling on a denial.
    """
    outcomes = [
        match_domain(candidate, domain, role.allow_subdomains)
        for domain in role.allowed_domains
    ]
    return min(outcomes, key=lambda m: m.value, default=DomainMatch.DOMAIN_DENIED)


def _denial_reason(match: DomainMatch, domain_denied_message: str) -> str:
    if match is DomainMatch.SUBDOMAIN_DENIED:
        return SUBDOMAINS_NOT_ALLOWED
    return domain_denied_message


def validate_identity(
    common_name: str,
    dns_sans: Sequence[str],
    role: Role,
) -> Result[ValidatedIdentity]:
    """
    Evaluate a CN and its DNS SANs against a role.

    Failures are always user-facing: AUTHORIZATION_ERROR for domain and
    subdomain denials, VALIDATION_ERROR for a SAN set that doesn't contain
    the CN.
    """
    cn_match = evaluate_candidate(common_name, role)
    if cn_match is not DomainMatch.ALLOWED:
        return Result.failure(
            ErrorCode.AUTHORIZATION_ERROR,
            _denial_reason(cn_match, COMMON_NAME_NOT_ALLOWED),
        )

    last_denial: str | None = None
    san_equals_cn = False
    for san in dns_sans:
        san_equals_cn = san_equals_cn or san == common_name
        match = evaluate_candidate(san, role)
        if match is not DomainMatch.ALLOWED:
            last_denial = _denial_reason(match, SAN_NOT_ALLOWED.format(san=san))

    if last_denial is not None:
        return Result.failure(ErrorCode.AUTHORIZATION_ERROR, last_denial)
    if not san_equals_cn:
        return Result.failure(ErrorCode.VALIDATION_ERROR, SAN_CN_MISMATCH)
    return Result.success(ValidatedIdentity(common_name=common_name, dns_sans=tuple(dns_sans)))
