"""Synthesis and LLM access for research runs."""

from .citations import extract_claims, validate_claim_citations
from .synthesizer import SynthesisResult, Synthesizer, extract_json_object, fallback_synthesis, parse_synthesis

__all__ = [
    "SynthesisResult",
    "Synthesizer",
    "extract_claims",
    "extract_json_object",
    "fallback_synthesis",
    "parse_synthesis",
    "validate_claim_citations",
]
