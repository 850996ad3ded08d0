"""Domain hierarchy parsing.

Brief:
  Turns a domain name into the ordered list of zone levels a resolver walks,
  root first. Parsing is pure and deterministic so that simulated traces are
  reproducible for a given domain and settings.

Inputs:
  - Raw domain strings.

Outputs:
  - Tuples of HierarchyLevel, plus helpers used by the delegation and DNSSEC
    stages to pick out particular levels.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Tuple

import dns.exception
import dns.name

from .errors import InvalidDomainError
from .models import (
    KIND_AUTHORITATIVE,
    KIND_INTERMEDIATE,
    KIND_ROOT,
    KIND_SLD,
    KIND_TLD,
)

# Two-label registry zones under country-code TLDs that behave like TLDs of
# their own (a registrar-operated zone sits between the ccTLD and the
# registrant's zone).
KNOWN_COMPOUND_ZONES: FrozenSet[str] = frozenset(
    {
        # United Kingdom
        "co.uk", "ac.uk", "gov.uk", "org.uk", "net.uk", "sch.uk", "nhs.uk",
        "police.uk",
        # India
        "co.in", "ac.in", "gov.in", "org.in", "net.in", "edu.in", "nic.in",
        "res.in",
        # Australia
        "com.au", "edu.au", "gov.au", "net.au", "org.au", "asn.au", "id.au",
        # Japan
        "co.jp", "ac.jp", "go.jp", "or.jp", "ne.jp", "gr.jp", "ed.jp",
        # China
        "com.cn", "edu.cn", "gov.cn", "net.cn", "org.cn", "ac.cn",
        # Brazil
        "com.br", "edu.br", "gov.br", "net.br", "org.br",
        # New Zealand
        "co.nz", "ac.nz", "govt.nz", "net.nz", "org.nz",
        # South Africa
        "co.za", "ac.za", "gov.za", "net.za", "org.za",
    }
)

_MAX_LABEL_LEN = 63
_MAX_NAME_LEN = 253


@dataclass(frozen=True)
class HierarchyLevel:
    """One zone boundary in the DNS naming tree.

    Inputs:
      - depth: 0 for root, then 1 per label from the right.
      - label: The label at this level ('.' for root).
      - full_zone: Fully qualified zone name with trailing dot.
      - kind: root, tld, sld, intermediate or authoritative.
      - is_known_compound_zone: True for a level matched in
        KNOWN_COMPOUND_ZONES.
    """

    depth: int
    label: str
    full_zone: str
    kind: str
    is_known_compound_zone: bool = False

    @property
    def zone(self) -> str:
        """Zone name without the trailing dot ('.' for root)."""

        if self.full_zone == ".":
            return "."
        return self.full_zone.rstrip(".")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "depth": self.depth,
            "label": self.label,
            "fullZone": self.full_zone,
            "kind": self.kind,
            "isKnownCompoundZone": self.is_known_compound_zone,
        }


def normalize_domain(domain: str) -> str:
    """Brief: Lower-case a domain and strip surrounding space and one trailing dot.

    Inputs:
      - domain: Raw domain string.

    Outputs:
      - str: Normalized name (may be empty for invalid input).
    """

    text = str(domain or "").strip().lower()
    if text.endswith("."):
        text = text[:-1]
    return text


def parse_hierarchy(domain: str) -> Tuple[HierarchyLevel, ...]:
    """Brief: Parse a domain into root-first hierarchy levels.

    Inputs:
      - domain: Raw domain string, e.g. 'ims.iitgn.ac.in' or 'example.com.'.

    Outputs:
      - Tuple of HierarchyLevel: root, TLD, optional compound second-level zone,
        intermediate levels, and the authoritative leaf last.

    Raises:
      - InvalidDomainError: on empty input, empty labels, whitespace inside a
        label, or labels/names over the DNS length limits once IDNA-encoded.

    Notes:
      - The leaf is always 'authoritative'. When the domain itself is a known
        compound zone (e.g. 'co.uk') the leaf keeps kind 'authoritative' and is
        flagged is_known_compound_zone.

    Example:
      >>> [lvl.kind for lvl in parse_hierarchy("www.example.co.uk")]
      ['root', 'tld', 'sld', 'intermediate', 'authoritative']
    """

    normalized = normalize_domain(domain)
    if not normalized:
        raise InvalidDomainError(str(domain), "empty domain name")
    if len(normalized) > _MAX_NAME_LEN:
        raise InvalidDomainError(
            str(domain), f"name longer than {_MAX_NAME_LEN} characters"
        )

    labels = normalized.split(".")
    for label in labels:
        if not label:
            raise InvalidDomainError(str(domain), "empty label")
        if len(label) > _MAX_LABEL_LEN:
            raise InvalidDomainError(
                str(domain), f"label {label!r} longer than {_MAX_LABEL_LEN} characters"
            )
        if any(ch.isspace() for ch in label):
            raise InvalidDomainError(str(domain), f"label {label!r} contains whitespace")

    # Label and name limits apply to the IDNA-encoded wire form.
    try:
        dns.name.from_text(normalized, idna_codec=dns.name.IDNA_2003)
    except dns.exception.DNSException as exc:
        raise InvalidDomainError(str(domain), f"not a valid DNS name: {exc}") from exc

    compound_index = -1
    if len(labels) >= 2 and ".".join(labels[-2:]) in KNOWN_COMPOUND_ZONES:
        compound_index = len(labels) - 2

    levels = [HierarchyLevel(depth=0, label=".", full_zone=".", kind=KIND_ROOT)]
    last = len(labels) - 1
    for i in range(last, -1, -1):
        if i == 0:
            kind = KIND_AUTHORITATIVE
        elif i == last:
            kind = KIND_TLD
        elif i == compound_index:
            kind = KIND_SLD
        else:
            kind = KIND_INTERMEDIATE
        levels.append(
            HierarchyLevel(
                depth=len(labels) - i,
                label=labels[i],
                full_zone=".".join(labels[i:]) + ".",
                kind=kind,
                is_known_compound_zone=(i == compound_index),
            )
        )
    return tuple(levels)


def level_key(level: HierarchyLevel) -> str:
    """Brief: Stable stage-id fragment for a level ('intermediate_<depth>' etc.)."""

    if level.kind == KIND_INTERMEDIATE:
        return f"{KIND_INTERMEDIATE}_{level.depth}"
    return level.kind


def tld_level(levels: Tuple[HierarchyLevel, ...]) -> HierarchyLevel:
    """Brief: Return the level directly below root (the TLD, or the leaf of a
    single-label name)."""

    return levels[1]


def registered_zone_level(levels: Tuple[HierarchyLevel, ...]) -> HierarchyLevel:
    """Brief: Return the registrant's zone: the level below the TLD, or below
    a known compound zone when one is present. Clamped to the leaf."""

    index = 2
    if len(levels) > 2 and levels[2].kind == KIND_SLD:
        index = 3
    return levels[min(index, len(levels) - 1)]
