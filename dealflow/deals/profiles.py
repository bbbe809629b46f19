"""Investor fund profiles and the prompt blocks derived from them."""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel

from dealflow.state.models import RUBRIC_DIMENSIONS, DealInput, DealTerms, FirmType


class FundProfile(BaseModel):
    firm_type: FirmType
    risk_appetite: str
    return_target: str
    return_horizon: str
    check_size_guidance: str
    evaluation_lens: str
    key_metrics: List[str]
    deal_breakers: List[str]
    scoring_weights: Dict[str, float]
    aum: str = "Not specified"

    @property
    def label(self) -> str:
        return self.firm_type.value.replace("_", " ")


FUND_PROFILES: Dict[FirmType, FundProfile] = {
    FirmType.ANGEL: FundProfile(
        firm_type=FirmType.ANGEL,
        risk_appetite="aggressive",
        return_target="50-100x on winners",
        return_horizon="7-10 years",
        check_size_guidance="$25K-$500K per deal",
        evaluation_lens=(
            "Bet on extraordinary founders with massive vision. Portfolio construction expects most "
            "bets to fail; one outlier pays for everything. Conviction in the founder matters more than metrics."
        ),
        key_metrics=["founder domain expertise", "vision clarity", "market timing", "TAM potential",
                     "capital efficiency"],
        deal_breakers=["weak founder conviction", "small TAM (<$1B)",
                       "crowded market with no differentiation",
                       "capital-intensive with no path to efficiency"],
        scoring_weights={"market": 1.0, "moat": 0.7, "why_now": 1.3, "execution": 1.5, "deal_fit": 0.5},
    ),
    FirmType.EARLY_VC: FundProfile(
        firm_type=FirmType.EARLY_VC,
        risk_appetite="aggressive",
        return_target="10-30x fund returns",
        return_horizon="5-7 years to exit",
        check_size_guidance="1-3% of AUM per deal",
        evaluation_lens=(
            "Find companies that can become category leaders. Need evidence of product-market fit or a "
            "clear path to it. Team quality and TAM size are the primary filters. Growth trajectory "
            "matters more than current revenue."
        ),
        key_metrics=["TAM/SAM/SOM", "team completeness", "PMF signals", "growth rate", "burn multiple",
                     "competitive positioning"],
        deal_breakers=["TAM < $5B", "incomplete founding team", "no PMF signals", "burn rate with no growth",
                       "regulatory risk without clear path"],
        scoring_weights={"market": 1.3, "moat": 1.0, "why_now": 1.2, "execution": 1.2, "deal_fit": 0.8},
    ),
    FirmType.GROWTH_VC: FundProfile(
        firm_type=FirmType.GROWTH_VC,
        risk_appetite="moderate",
        return_target="5-10x on invested capital",
        return_horizon="3-5 years to exit",
        check_size_guidance="2-5% of AUM per deal",
        evaluation_lens=(
            "Invest in proven business models scaling rapidly. Revenue must be real and growing. Unit "
            "economics must work or be clearly trending positive. The question is how big this can get "
            "and how fast."
        ),
        key_metrics=["ARR/revenue", "revenue growth rate", "net retention", "gross margin", "CAC/LTV",
                     "burn multiple", "path to profitability"],
        deal_breakers=["declining growth", "negative unit economics at scale", "customer concentration >30%",
                       "no clear path to $100M+ ARR", "governance concerns"],
        scoring_weights={"market": 1.2, "moat": 1.3, "why_now": 0.8, "execution": 1.2, "deal_fit": 1.0},
    ),
    FirmType.LATE_VC: FundProfile(
        firm_type=FirmType.LATE_VC,
        risk_appetite="moderate",
        return_target="3-5x on invested capital",
        return_horizon="2-4 years to exit/IPO",
        check_size_guidance="3-7% of AUM per deal",
        evaluation_lens=(
            "Pre-IPO and late-stage growth. The company must demonstrate market leadership, sustainable "
            "competitive advantages and a credible path to public markets or a strategic acquisition. "
            "Valuation discipline is critical."
        ),
        key_metrics=["revenue scale ($50M+)", "profitability trajectory", "market share",
                     "competitive moat depth", "management bench", "IPO readiness"],
        deal_breakers=["overvalued vs comparables", "weak CFO/finance function", "regulatory overhang",
                       "customer churn >15%", "no clear exit path in 3y"],
        scoring_weights={"market": 1.0, "moat": 1.5, "why_now": 0.7, "execution": 1.3, "deal_fit": 1.2},
    ),
    FirmType.PE: FundProfile(
        firm_type=FirmType.PE,
        risk_appetite="conservative",
        return_target="2-3x MOIC, 20-25% IRR",
        return_horizon="3-5 year hold period",
        check_size_guidance="5-15% of fund per deal",
        evaluation_lens=(
            "Value creation through operational improvement, not just growth. Need stable cash flows, "
            "clear operational levers and a defensible market position. Downside protection matters as "
            "much as upside."
        ),
        key_metrics=["EBITDA", "EBITDA margin expansion potential", "free cash flow", "customer retention",
                     "operational efficiency", "management depth", "debt capacity"],
        deal_breakers=["negative EBITDA with no path", "high customer concentration", "key-person dependency",
                       "weak cash flow conversion", "regulatory risk that impairs value"],
        scoring_weights={"market": 0.8, "moat": 1.5, "why_now": 0.6, "execution": 1.5, "deal_fit": 1.3},
    ),
    FirmType.IB: FundProfile(
        firm_type=FirmType.IB,
        risk_appetite="conservative",
        return_target="Advisory: maximize transaction value",
        return_horizon="6-18 month transaction timeline",
        check_size_guidance="N/A (advisory mandate)",
        evaluation_lens=(
            "Evaluate as a potential M&A target or IPO candidate. Focus on comparable transactions, "
            "strategic value to acquirers, defensible positioning and a financial profile that commands "
            "premium multiples."
        ),
        key_metrics=["revenue multiple vs comps", "strategic acquirer fit", "IP/patent portfolio",
                     "recurring revenue %", "management retention risk", "regulatory clearance risk"],
        deal_breakers=["no strategic acquirer interest", "messy cap table", "unresolved litigation",
                       "declining fundamentals", "key-person risk with no succession"],
        scoring_weights={"market": 1.0, "moat": 1.3, "why_now": 1.0, "execution": 1.0, "deal_fit": 1.5},
    ),
}


def resolve_fund_profile(firm_type: Optional[FirmType] = None, aum: Optional[str] = None) -> FundProfile:
    base = FUND_PROFILES.get(firm_type or FirmType.EARLY_VC, FUND_PROFILES[FirmType.EARLY_VC])
    return base.model_copy(update={"aum": aum or "Not specified"})


def _weight_marker(weight: float) -> str:
    if weight > 1.2:
        return "HIGH WEIGHT"
    if weight > 0.9:
        return "NORMAL"
    return "LOWER WEIGHT"


def investor_lens_block(profile: FundProfile, thesis: Optional[str] = None) -> str:
    lines = [
        "=== INVESTOR LENS ===",
        f"Fund Type: {profile.label.upper()} | AUM: {profile.aum}",
        f"Risk Appetite: {profile.risk_appetite.upper()}",
        f"Return Target: {profile.return_target} over {profile.return_horizon}",
        f"Typical Check Size: {profile.check_size_guidance}",
        f"Fund Thesis: {thesis or 'Not specified'}",
        "",
        "EVALUATION PHILOSOPHY:",
        profile.evaluation_lens,
        "",
        "KEY METRICS (in priority order):",
    ]
    lines.extend(f"  {index}. {metric}" for index, metric in enumerate(profile.key_metrics, start=1))
    lines.append("")
    lines.append("DEAL BREAKERS for this fund type:")
    lines.extend(f"  x {breaker}" for breaker in profile.deal_breakers)
    lines.append("")
    lines.append("SCORING EMPHASIS:")
    for dimension in RUBRIC_DIMENSIONS:
        weight = profile.scoring_weights.get(dimension, 1.0)
        lines.append(f"  {dimension}: {_weight_marker(weight)} ({weight}x)")
    return "\n".join(lines)


_TERM_LABELS = (
    ("round_type", "Round"),
    ("raise_amount", "Total Raise"),
    ("ticket_size", "Our Ticket"),
    ("valuation", "Valuation"),
    ("pre_money_valuation", "Pre-Money"),
    ("post_money_valuation", "Post-Money"),
    ("equity_offered", "Equity Offered"),
    ("current_arr", "Current ARR"),
    ("mrr", "Current MRR"),
    ("revenue_growth", "Revenue Growth"),
    ("gross_margin", "Gross Margin"),
    ("burn_rate", "Burn Rate"),
    ("runway_months", "Runway (months)"),
    ("team_size", "Team Size"),
    ("key_hires_planned", "Key Hires Planned"),
    ("use_of_proceeds", "Use of Proceeds"),
    ("previous_rounds", "Previous Rounds"),
    ("cap_table_notes", "Cap Table"),
    ("existing_investors", "Existing Investors"),
    ("board_seats", "Board"),
    ("timeline", "Timeline"),
    ("founder_notes", "Founder Notes"),
)


def missing_critical_terms(terms: Optional[DealTerms]) -> List[str]:
    terms = terms or DealTerms()
    missing = []
    if not terms.valuation and not terms.pre_money_valuation:
        missing.append("valuation")
    if not terms.ticket_size:
        missing.append("ticket size")
    if not terms.current_arr and not terms.mrr:
        missing.append("ARR/MRR")
    if not terms.burn_rate:
        missing.append("burn rate")
    return missing


def deal_terms_block(deal: DealInput) -> str:
    terms = deal.deal_terms
    if terms is None or terms.is_empty():
        return (
            "=== DEAL TERMS ===\n"
            "No founder-provided deal terms available. Flag this as a key unknown: the decision cannot "
            "be properly evaluated without valuation, ticket size, round type, ARR and burn rate."
        )

    lines = ["=== DEAL TERMS (from founder) ==="]
    for field_name, label in _TERM_LABELS:
        value = getattr(terms, field_name)
        if value:
            lines.append(f"{label}: {value}")

    missing = missing_critical_terms(terms)
    if missing:
        lines.append("")
        lines.append(f"MISSING CRITICAL DATA: {', '.join(missing)}. Flag as top unknowns for founder follow-up.")
    return "\n".join(lines)
