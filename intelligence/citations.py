"""Claim extraction and the claim/citation invariant."""

from __future__ import annotations

import logging
from typing import List, Sequence

from core import Citation, ResearchClaim, SourceDoc
from utils.exceptions import SchemaError


logger = logging.getLogger(__name__)

CLAIM_TEXT_CLIP = 320
QUOTE_CLIP = 180


def clip(text: str, max_len: int) -> str:
    value = str(text or "")
    return value if len(value) <= max_len else f"{value[:max_len]}..."


def extract_claims(sources: Sequence[SourceDoc]) -> List[ResearchClaim]:
    """One cited claim per source that has a body, numbered C1, C2, ..."""
    claims: List[ResearchClaim] = []
    for source in sources:
        body = source.body.strip()
        if not body:
            logger.info("extract_skip_empty url=%s", source.url)
            continue
        claim_ref = f"C{len(claims) + 1}"
        claims.append(
            ResearchClaim(
                claim_ref=claim_ref,
                text=clip(body, CLAIM_TEXT_CLIP),
                citations=[
                    Citation(
                        url=source.url,
                        title=source.title,
                        quote=clip(body, QUOTE_CLIP),
                        claim_ref=claim_ref,
                        published_at=source.published_at,
                    )
                ],
            )
        )
    return claims


def validate_claim_citations(claims: Sequence[ResearchClaim]) -> None:
    """Raise ``SchemaError`` unless every claim carries complete, matching citations.

    Checked over the whole set; the first violation fails it.
    """
    for claim in claims:
        if not claim.citations:
            raise SchemaError(f"Missing citations for claim {claim.claim_ref}")
        for citation in claim.citations:
            if not (citation.url.strip() and citation.title.strip() and citation.quote.strip()):
                raise SchemaError(f"Incomplete citation in claim {claim.claim_ref}")
            if not citation.claim_ref.strip() or citation.claim_ref != claim.claim_ref:
                raise SchemaError(
                    f"Citation claim_ref mismatch in claim {claim.claim_ref}",
                    {"citation_claim_ref": citation.claim_ref},
                )
