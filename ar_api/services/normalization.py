"""Invoice reference number normalization.

Acumatica hands out reference numbers with and without leading zeros
("1234", "001234"). Everything stored or compared in this system uses the
canonical six digit form.
"""

REFERENCE_NUMBER_LENGTH = 6


class InvalidReferenceNumber(ValueError):
    """Raised when a value cannot be turned into a six digit reference."""


def normalize_reference_number(raw) -> str:
    if raw is None:
        raise InvalidReferenceNumber("Reference number is required")

    value = str(raw).strip()
    if not value:
        raise InvalidReferenceNumber("Reference number is required")
    if not value.isdigit() or not value.isascii():
        raise InvalidReferenceNumber(f"Reference number must be numeric: {value!r}")
    if len(value) > REFERENCE_NUMBER_LENGTH:
        raise InvalidReferenceNumber(
            f"Reference number longer than {REFERENCE_NUMBER_LENGTH} digits: {value!r}"
        )
    return value.zfill(REFERENCE_NUMBER_LENGTH)


def is_numeric_term(term: str) -> bool:
    term = (term or "").strip()
    return bool(term) and term.isdigit() and term.isascii()


def search_reference_candidates(term: str) -> list[str]:
    """Exact-match candidates for a numeric search term.

    Returns the raw term and its padded form (deduplicated, order kept), or
    an empty list when the term is not a plausible reference number.
    """
    term = (term or "").strip()
    if not is_numeric_term(term):
        return []

    candidates = [term]
    if len(term) <= REFERENCE_NUMBER_LENGTH:
        padded = term.zfill(REFERENCE_NUMBER_LENGTH)
        if padded != term:
            candidates.append(padded)
    return candidates


def normalize_many(values) -> tuple[list[str], list[str]]:
    """Normalize a batch of references.

    Returns (normalized, rejected); duplicates collapse to their first
    occurrence.
    """
    normalized: list[str] = []
    rejected: list[str] = []
    seen: set[str] = set()
    for value in values or []:
        try:
            ref = normalize_reference_number(value)
        except InvalidReferenceNumber:
            rejected.append(str(value))
            continue
        if ref not in seen:
            seen.add(ref)
            normalized.append(ref)
    return normalized, rejected
