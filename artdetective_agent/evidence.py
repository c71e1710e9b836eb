"""
Evidence buckets and confidence scoring.

Every check is a keyword/pattern presence test over the lowercased listing
text. Bucket scores count ``Good`` as 1 and ``Needs review`` as 0.5; the
overall score is the weight-blended sum of bucket scores.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from .models import (
    BucketKey,
    CheckValue,
    ConfidenceStatus,
    EvidenceBucket,
    EvidenceCheck,
    ListingFacts,
    RecommendedAction,
)

MAX_SIGNALS = 3


@dataclass(frozen=True)
class BucketDef:
    key: BucketKey
    label: str
    weight: int


BUCKETS: tuple[BucketDef, ...] = (
    BucketDef("authenticity", "Authenticity", 35),
    BucketDef("provenance", "Provenance", 20),
    BucketDef("price", "Price reassurance", 20),
    BucketDef("risk", "Risk reducers", 15),
    BucketDef("visual", "Visual proof", 10),
)


def _kw(pattern: str) -> re.Pattern[str]:
    return re.compile(rf"\b(?:{pattern})\b", re.IGNORECASE)


COA_RE = _kw(r"coa|certificate of authenticity|authenticity certificate")
SIGNATURE_RE = _kw(r"signed|signature|hand[- ]signed")
EDITION_RE = _kw(r"edition|ed\.\s?\d+|/\d{1,4}|numbered")
PROVENANCE_RE = _kw(r"provenance|acquired from|from the collection|previous sale|auction|sold at")
RELEASE_RE = _kw(r"released|release|drop|year|published")
MARKET_RE = _kw(r"comparable|market|last sale|price history|median|percentile")
RETURN_POLICY_RE = _kw(r"return policy|returns accepted|return within|no returns")
INSURANCE_RE = _kw(r"shipping insurance|insured shipping|insured")
BUYER_PROTECTION_RE = _kw(r"buyer protection|money back guarantee|guarantee")
SELLER_RELIABILITY_RE = _kw(r"positive feedback|seller rating|top rated seller|trusted seller")
DOCS_RE = _kw(r"receipt|invoice|proof of purchase|documentation")


def has_coa(text: str) -> bool:
    return bool(COA_RE.search(text))


def has_signature(text: str) -> bool:
    return bool(SIGNATURE_RE.search(text))


def has_edition(text: str) -> bool:
    return bool(EDITION_RE.search(text))


def has_provenance(text: str) -> bool:
    return bool(PROVENANCE_RE.search(text))


def has_release_context(text: str) -> bool:
    return bool(RELEASE_RE.search(text))


def has_market_comparison(text: str) -> bool:
    return bool(MARKET_RE.search(text))


def has_return_policy(text: str) -> bool:
    return bool(RETURN_POLICY_RE.search(text))


def has_insurance(text: str) -> bool:
    return bool(INSURANCE_RE.search(text))


def has_buyer_protection(text: str) -> bool:
    return bool(BUYER_PROTECTION_RE.search(text))


def has_seller_reliability(text: str) -> bool:
    return bool(SELLER_RELIABILITY_RE.search(text))


def has_documentation(text: str) -> bool:
    return bool(DOCS_RE.search(text)) or has_coa(text)


def _round_half_up(numerator: int, denominator: int) -> int:
    return (2 * numerator + denominator) // (2 * denominator)


def status_for(score: int) -> ConfidenceStatus:
    if score >= 75:
        return "Good"
    if score >= 50:
        return "Needs review"
    return "Missing evidence"


def to_check(label: str, good: bool, detail_when_good: str, detail_when_missing: str) -> EvidenceCheck:
    return EvidenceCheck(
        label=label,
        value="Good" if good else "Missing evidence",
        detail=detail_when_good if good else detail_when_missing,
    )


def bucket_score(checks: list[EvidenceCheck]) -> int:
    if not checks:
        return 0
    # Counted in half points so the rounding stays exact.
    halves = sum(2 if c.value == "Good" else 1 if c.value == "Needs review" else 0 for c in checks)
    return _round_half_up(100 * halves, 2 * len(checks))


def _explanation(status: ConfidenceStatus, good: int, total: int) -> str:
    if status == "Good":
        return f"{good}/{total} signals are solid in this bucket."
    if status == "Needs review":
        return f"Partial evidence ({good}/{total}) - verify missing items with seller."
    return f"Low evidence ({good}/{total}) - high uncertainty remains."


def build_bucket(bucket: BucketDef, checks: list[EvidenceCheck]) -> EvidenceBucket:
    score = bucket_score(checks)
    status = status_for(score)
    good = sum(1 for c in checks if c.value == "Good")
    return EvidenceBucket(
        key=bucket.key,
        label=bucket.label,
        weight=bucket.weight,
        score=score,
        status=status,
        checks=checks,
        explanation=_explanation(status, good, len(checks)),
    )


def authenticity_checks(text: str) -> list[EvidenceCheck]:
    return [
        to_check("COA presence", has_coa(text), "COA language detected.", "No COA mention found."),
        to_check("Signature evidence", has_signature(text), "Signature keywords detected.", "No signature evidence found."),
        to_check("Edition consistency", has_edition(text), "Edition/numbering clues detected.", "Edition details missing."),
    ]


def provenance_checks(text: str) -> list[EvidenceCheck]:
    return [
        to_check(
            "Prior listing/sale mentions",
            has_provenance(text),
            "Provenance or prior-sale context found.",
            "No provenance trail mentioned.",
        ),
        to_check(
            "Release context",
            has_release_context(text),
            "Release/date context appears in listing.",
            "Release context is missing.",
        ),
    ]


def price_checks(text: str, price: float | None) -> list[EvidenceCheck]:
    has_price = price is not None
    has_market = has_market_comparison(text)
    # Without a market feed the percentile check tops out at "Needs review".
    percentile: CheckValue = "Needs review" if has_price and has_market else "Missing evidence"
    return [
        to_check(
            "Comparable listings/sales",
            has_price,
            "Current listing includes a concrete price.",
            "No concrete listing price extracted.",
        ),
        to_check(
            "12-month trend band",
            has_market,
            "Market-comparison language detected.",
            "No trend/comparable references found.",
        ),
        EvidenceCheck(
            label="Percentile position",
            value=percentile,
            detail=(
                "Price is available; percentile still requires stronger market feed."
                if percentile == "Needs review"
                else "Not enough context to compute percentile position."
            ),
        ),
    ]


def risk_checks(text: str) -> list[EvidenceCheck]:
    return [
        to_check("Return policy", has_return_policy(text), "Return policy terms detected.", "Return policy not clearly stated."),
        to_check("Shipping insurance", has_insurance(text), "Shipping insurance language detected.", "No shipping insurance mention."),
        to_check("Buyer protection", has_buyer_protection(text), "Buyer protection terms found.", "Buyer protection mention missing."),
        to_check(
            "Seller reliability",
            has_seller_reliability(text),
            "Seller reliability signals detected.",
            "Seller reliability signal missing.",
        ),
    ]


def visual_checks(text: str, image_urls: list[str]) -> list[EvidenceCheck]:
    return [
        to_check("Image quality score", len(image_urls) > 0, "At least one image detected.", "No listing images detected."),
        to_check(
            "Detail shots",
            len(image_urls) >= 2,
            "Multiple images suggest detail coverage.",
            "No detail-shot coverage detected.",
        ),
        to_check(
            "Docs detection",
            has_documentation(text),
            "COA/receipt-like docs mention detected.",
            "No COA/receipt docs mention detected.",
        ),
    ]


def evaluate_buckets(raw: str, facts: ListingFacts) -> list[EvidenceBucket]:
    text = (raw or "").lower()
    checks_by_key: dict[str, list[EvidenceCheck]] = {
        "authenticity": authenticity_checks(text),
        "provenance": provenance_checks(text),
        "price": price_checks(text, facts.price),
        "risk": risk_checks(text),
        "visual": visual_checks(text, facts.image_urls),
    }
    return [build_bucket(bucket, checks_by_key[bucket.key]) for bucket in BUCKETS]


def overall_score(buckets: list[EvidenceBucket]) -> int:
    return _round_half_up(sum(b.score * b.weight for b in buckets), 100)


def recommended_action(score: int, buckets: list[EvidenceBucket]) -> RecommendedAction:
    weak_core = any(
        b.key in ("authenticity", "risk") and b.status == "Missing evidence" for b in buckets
    )
    if score >= 75 and not weak_core:
        return "Proceed"
    if score >= 50:
        return "Ask seller for docs"
    return "Wait/monitor"


def positive_signals(buckets: list[EvidenceBucket], limit: int = MAX_SIGNALS) -> list[str]:
    return [
        f"[{b.label}] {c.detail}" for b in buckets for c in b.checks if c.value == "Good"
    ][:limit]


def missing_signals(buckets: list[EvidenceBucket], limit: int = MAX_SIGNALS) -> list[str]:
    return [
        f"[{b.label}] {c.detail}" for b in buckets for c in b.checks if c.value != "Good"
    ][:limit]
