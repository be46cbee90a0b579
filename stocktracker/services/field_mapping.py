"""
Column-mapping inference for CSV imports.

Headers are normalized (lowercase, punctuation and whitespace removed)
and compared against a synonym table per canonical field:

* exact normalized match      -> confidence 1.0
* one contains the other      -> confidence 0.7
* near miss (edit similarity above 0.7, e.g. a typo)
                              -> 0.7 scaled by the similarity
* anything else               -> header left unmapped

A canonical field is never suggested for two headers. Candidates are
assigned best-confidence first; ties go to the header that appears first.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from rapidfuzz.distance import Levenshtein

from stocktracker.exceptions import InvalidInputError, MissingFieldMappingError

logger = logging.getLogger(__name__)

# Canonical field names
TYPE = "type"
SYMBOL = "symbol"
EXCHANGE = "exchange"
TRANSACTION_DATE = "transactionDate"
SHARES = "shares"
PRICE_PER_SHARE = "pricePerShare"
BROKER_FEE = "brokerFee"
NOTES = "notes"
SKIP = "skip"

CANONICAL_FIELDS = (TYPE, SYMBOL, EXCHANGE, TRANSACTION_DATE, SHARES, PRICE_PER_SHARE, BROKER_FEE, NOTES, SKIP)
REQUIRED_FIELDS = (SYMBOL, TRANSACTION_DATE, SHARES, PRICE_PER_SHARE)

EXACT_CONFIDENCE = 1.0
PARTIAL_CONFIDENCE = 0.7
AUTO_ACCEPT_CONFIDENCE = 0.9
MIN_PARTIAL_LENGTH = 3
MIN_SIMILARITY = 0.7
MIN_FUZZY_LENGTH = 4

FIELD_SYNONYMS: Dict[str, List[str]] = {
    SYMBOL: ["ticker", "symbol", "stock", "stock symbol", "ticker symbol", "instrument", "security", "code"],
    TYPE: ["type", "action", "side", "transaction type", "trans code", "buy/sell", "trade type", "order type"],
    TRANSACTION_DATE: ["date", "trade date", "transaction date", "activity date", "settlement date",
                       "execution date", "exec date"],
    SHARES: ["qty", "quantity", "shares", "units", "share count", "no. of shares", "share quantity"],
    PRICE_PER_SHARE: ["price", "price per share", "unit price", "share price", "cost per share",
                      "execution price", "trade price", "t. price"],
    EXCHANGE: ["exchange", "market", "venue", "listing exchange", "stock exchange"],
    BROKER_FEE: ["fee", "fees", "commission", "commissions", "broker fee"],
    NOTES: ["notes", "note", "description", "memo", "comment", "comments", "remarks"],
}

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_header(header: str) -> str:
    return _NON_ALNUM.sub("", header.lower())


_NORMALIZED_SYNONYMS: Dict[str, List[str]] = {
    canonical: [normalize_header(s) for s in synonyms]
    for canonical, synonyms in FIELD_SYNONYMS.items()
}


@dataclass
class MappingSuggestion:
    suggested_mappings: Dict[str, str] = field(default_factory=dict)
    confidence_scores: Dict[str, float] = field(default_factory=dict)
    unmapped_columns: List[str] = field(default_factory=list)

    def accepted(self, threshold: float = AUTO_ACCEPT_CONFIDENCE) -> Dict[str, str]:
        """Suggestions confident enough to apply without asking."""
        return {
            column: canonical
            for column, canonical in self.suggested_mappings.items()
            if self.confidence_scores[column] >= threshold
        }


def _score(normalized: str, synonyms: Sequence[str]) -> float:
    if not normalized:
        return 0.0
    if normalized in synonyms:
        return EXACT_CONFIDENCE
    if len(normalized) < MIN_PARTIAL_LENGTH:
        return 0.0
    for synonym in synonyms:
        if len(synonym) >= MIN_PARTIAL_LENGTH and (synonym in normalized or normalized in synonym):
            return PARTIAL_CONFIDENCE
    if len(normalized) < MIN_FUZZY_LENGTH:
        return 0.0
    similarity = max(
        (Levenshtein.normalized_similarity(normalized, s) for s in synonyms if len(s) >= MIN_FUZZY_LENGTH),
        default=0.0,
    )
    if similarity > MIN_SIMILARITY:
        return round(PARTIAL_CONFIDENCE * similarity, 2)
    return 0.0


def suggest_mapping(headers: Sequence[str]) -> MappingSuggestion:
    """Suggest a canonical field for each header, with confidence."""
    if not headers:
        raise InvalidInputError("At least one column header is required")

    field_order = {canonical: i for i, canonical in enumerate(CANONICAL_FIELDS)}
    candidates = []
    for position, header in enumerate(headers):
        normalized = normalize_header(header)
        for canonical, synonyms in _NORMALIZED_SYNONYMS.items():
            confidence = _score(normalized, synonyms)
            if confidence > 0:
                candidates.append((-confidence, position, field_order[canonical], header, canonical))

    suggestion = MappingSuggestion()
    taken_headers = set()
    taken_fields = set()
    for neg_confidence, _, _, header, canonical in sorted(candidates):
        if header in taken_headers or canonical in taken_fields:
            continue
        suggestion.suggested_mappings[header] = canonical
        suggestion.confidence_scores[header] = -neg_confidence
        taken_headers.add(header)
        taken_fields.add(canonical)

    # Preserve input order in the response
    suggestion.suggested_mappings = {h: suggestion.suggested_mappings[h] for h in headers
                                     if h in suggestion.suggested_mappings}
    suggestion.confidence_scores = {h: suggestion.confidence_scores[h] for h in suggestion.suggested_mappings}
    suggestion.unmapped_columns = [h for h in headers if h not in suggestion.suggested_mappings]

    logger.debug(f"[FieldMapping] {len(suggestion.suggested_mappings)}/{len(headers)} headers mapped")
    return suggestion


def resolve_mapping(field_mappings: Dict[str, str], headers: Optional[Sequence[str]] = None) -> Dict[str, Optional[str]]:
    """
    Invert a column -> canonical mapping into canonical -> column.

    Raises InvalidInputError for unknown canonical names, a field mapped
    twice or a column that is not in ``headers``; MissingFieldMappingError
    when a required field has no column.
    """
    inverse: Dict[str, Optional[str]] = {canonical: None for canonical in CANONICAL_FIELDS if canonical != SKIP}
    for column, canonical in field_mappings.items():
        if canonical is None or canonical == SKIP or canonical == "":
            continue
        if canonical not in inverse:
            raise InvalidInputError(f"Unknown field '{canonical}' for column '{column}'")
        if inverse[canonical] is not None:
            raise InvalidInputError(
                f"Field '{canonical}' is mapped to more than one column "
                f"('{inverse[canonical]}' and '{column}')"
            )
        if headers is not None and column not in headers:
            raise InvalidInputError(f"Column '{column}' is not present in the file")
        inverse[canonical] = column

    missing = [canonical for canonical in REQUIRED_FIELDS if inverse[canonical] is None]
    if missing:
        raise MissingFieldMappingError(missing)
    return inverse
