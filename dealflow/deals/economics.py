"""Deal economics digest computed from founder-provided terms.

Workers get the arithmetic done for them (multiples, implied ownership,
runway) so that their reasoning starts from numbers rather than strings.
"""

from __future__ import annotations

import re
from typing import List, Optional

from dealflow.deals.profiles import FundProfile
from dealflow.state.models import DealTerms, FirmType

_USD_PATTERN = re.compile(r"\$?\s*([\d.]+)\s*([KMB])?", re.IGNORECASE)
_MULTIPLIERS = {"K": 1e3, "M": 1e6, "B": 1e9}

MIN_OWNERSHIP_PCT = {FirmType.ANGEL: 1.0, FirmType.PE: 20.0}
DEFAULT_MIN_OWNERSHIP_PCT = 5.0


def parse_usd(value: Optional[str]) -> Optional[float]:
    """Parse amounts such as ``$4M``, ``1.5b`` or ``$250,000`` into dollars."""
    if not value:
        return None
    match = _USD_PATTERN.search(value.replace(",", ""))
    if not match:
        return None
    try:
        number = float(match.group(1))
    except ValueError:
        return None
    suffix = (match.group(2) or "").upper()
    return number * _MULTIPLIERS.get(suffix, 1.0)


def _millions(amount: float) -> str:
    return f"${amount / 1e6:.1f}M"


def _multiple_label(multiple: float) -> str:
    if multiple > 50:
        return "VERY HIGH, needs >100% growth to justify"
    if multiple > 20:
        return "HIGH, typical for fast-growth SaaS"
    if multiple > 10:
        return "MODERATE, reasonable for stage"
    return "LOW, potential value opportunity"


def _runway_label(months: int) -> str:
    if months > 18:
        return "COMFORTABLE"
    if months > 12:
        return "ADEQUATE"
    return "TIGHT, will need to raise again soon"


def annual_revenue(terms: DealTerms) -> Optional[float]:
    arr = parse_usd(terms.current_arr)
    if arr:
        return arr
    mrr = parse_usd(terms.mrr)
    return mrr * 12 if mrr else None


def implied_ownership_pct(terms: DealTerms) -> Optional[float]:
    """Our ticket as a share of post-money, or None if either side is unknown."""
    ticket = parse_usd(terms.ticket_size)
    post_money = parse_usd(terms.post_money_valuation)
    if not post_money:
        pre_money = parse_usd(terms.valuation) or parse_usd(terms.pre_money_valuation)
        if pre_money:
            post_money = pre_money + (parse_usd(terms.raise_amount) or 0.0)
    if not ticket or not post_money:
        return None
    return ticket / post_money * 100


def deal_economics_block(terms: Optional[DealTerms], profile: FundProfile) -> str:
    terms = terms or DealTerms()
    lines: List[str] = []

    valuation = parse_usd(terms.valuation) or parse_usd(terms.pre_money_valuation)
    revenue = annual_revenue(terms)
    ticket = parse_usd(terms.ticket_size)
    raise_amount = parse_usd(terms.raise_amount)
    burn = parse_usd(terms.burn_rate)

    if valuation:
        lines.append("VALUATION:")
        lines.append(f"  Stated valuation: {_millions(valuation)}")
        if revenue:
            multiple = valuation / revenue
            lines.append(f"  Revenue multiple: {multiple:.1f}x ({_multiple_label(multiple)})")

    if ticket or raise_amount:
        lines.append("DEAL STRUCTURE:")
        if raise_amount:
            lines.append(f"  Total raise: {_millions(raise_amount)}")
        if ticket:
            lines.append(f"  Our ticket: {_millions(ticket)}")
        ownership = implied_ownership_pct(terms)
        if ownership is not None:
            lines.append(f"  Implied ownership: {ownership:.1f}%")
            minimum = MIN_OWNERSHIP_PCT.get(profile.firm_type, DEFAULT_MIN_OWNERSHIP_PCT)
            if ownership < minimum:
                lines.append(f"  OWNERSHIP WARNING: below the ~{minimum:g}% a {profile.label} investor usually needs")
        if ticket and raise_amount:
            share = ticket / raise_amount * 100
            position = "LEAD" if share > 50 else "SIGNIFICANT" if share > 20 else "CO-INVESTOR"
            lines.append(f"  Share of round: {share:.0f}% ({position})")

    if burn or terms.runway_months:
        lines.append("BURN & RUNWAY:")
        if burn:
            lines.append(f"  Monthly burn: ${burn / 1e3:.0f}K")
            if revenue:
                lines.append(f"  Net burn: ${(burn - revenue / 12) / 1e3:.0f}K/mo after revenue")
        if terms.runway_months:
            lines.append(f"  Stated runway: {terms.runway_months} months")
        if burn and raise_amount:
            extension = round(raise_amount / burn)
            lines.append(f"  Runway added by this raise: ~{extension} months ({_runway_label(extension)})")

    if not lines:
        lines.append("Nothing computable from the provided terms.")
    if not terms.ticket_size:
        lines.append(f"Suggested ticket: {profile.check_size_guidance} (typical for a {profile.label} investor)")
    return "\n".join(lines)
