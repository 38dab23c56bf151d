"""
Label Intelligence Service.

Advisory AI helpers for building the product catalog:
- extract_label: best-effort structured read of a product label / SDS
- suggest_roles: ranked functional-role guesses for a product

Both call an OpenAI-compatible chat gateway. Results are untrusted
suggestions that a person confirms before anything reaches the catalog;
nothing here writes to the catalog. Gateway failures are raised as
AdvisoryServiceError subclasses and are never retried.
"""
import os
import re
import json
import logging
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

import openai
from openai import OpenAI

logger = logging.getLogger(__name__)

FARMCALC_AI_API_KEY = os.environ.get("FARMCALC_AI_API_KEY")
FARMCALC_AI_BASE_URL = os.environ.get("FARMCALC_AI_BASE_URL")
FARMCALC_AI_MODEL = os.environ.get("FARMCALC_AI_MODEL", "google/gemini-2.5-flash")

VALID_ROLES = [
    "fertility-macro",
    "fertility-micro",
    "biostimulant",
    "carbon-biology-food",
    "stress-mitigation",
    "uptake-translocation",
    "nitrogen-conversion",
    "rooting-vigor",
    "water-conditioning",
    "adjuvant",
]
VALID_CONFIDENCES = ["high", "medium", "low"]
DEFAULT_CONFIDENCE = "medium"

MIN_CONTENT_LENGTH = 10


class AdvisoryServiceError(Exception):
    """Base error for the advisory AI services."""
    pass


class Unauthorized(AdvisoryServiceError):
    """Missing or rejected gateway credentials."""
    pass


class RateLimitExceeded(AdvisoryServiceError):
    """Gateway answered 429."""
    pass


class CreditsExhausted(AdvisoryServiceError):
    """Gateway answered 402."""
    pass


class ExtractionFailed(AdvisoryServiceError):
    """The model returned nothing usable (empty content or no parseable JSON)."""
    pass


@dataclass
class LabelExtraction:
    product_name: Optional[str] = None
    form: Optional[str] = None
    category: Optional[str] = None
    manufacturer: Optional[str] = None
    density_lbs_per_gal: Optional[float] = None
    active_ingredients: Optional[str] = None
    application_rates: Optional[str] = None
    mixing_instructions: Optional[str] = None
    storage_handling: Optional[str] = None
    cautions: Optional[str] = None
    analysis: Dict[str, Any] = field(default_factory=dict)
    suggested_roles: List[str] = field(default_factory=list)
    chemical_data: Optional[Dict[str, Any]] = None
    extraction_confidence: str = DEFAULT_CONFIDENCE
    source_file_name: Optional[str] = None


@dataclass
class ProductInfo:
    """What the role classifier is told about a product."""
    product_name: Optional[str] = None
    category: Optional[str] = None
    analysis: Optional[Dict[str, float]] = None
    active_ingredients: Optional[str] = None


@dataclass
class RoleSuggestion:
    role: str
    confidence: str
    explanation: str
    evidence: List[str] = field(default_factory=list)


@dataclass
class RoleSuggestions:
    suggestions: List[RoleSuggestion] = field(default_factory=list)
    source_info: str = "Based on provided product information"


EXTRACTION_PROMPT = """You read agricultural product labels and safety data sheets.
Extract the data explicitly stated in the document and return one JSON object:
{
  "productName": string, "form": "liquid" | "dry" | null, "category": string | null,
  "manufacturer": string | null, "densityLbsPerGal": number | null,
  "activeIngredients": string | null, "applicationRates": string | null,
  "mixingInstructions": string | null, "storageHandling": string | null, "cautions": string | null,
  "npks": {"n": number, "p": number, "k": number, "s": number},
  "secondary": object | null, "micros": object | null, "approvedUses": [string],
  "extractionConfidence": "high" | "medium" | "low",
  "suggestedRoles": [string],
  "chemicalData": {
    "epaRegNumber": string | null, "signalWord": string | null,
    "restrictions": {
      "phiDays": number | null, "phiByCrop": [{"crop": string, "days": number}],
      "reiHours": number | null,
      "maxRatePerApplication": {"value": number, "unit": string} | null,
      "maxRatePerSeason": {"value": number, "unit": string} | null,
      "maxApplicationsPerSeason": number | null,
      "rotationRestrictions": [{"crop": string, "days": number | null, "months": number | null, "notes": string | null}]
    }
  } | null
}
Use null for values not found. Return only the JSON object."""

ROLE_SUGGESTION_PROMPT = f"""You classify crop input products by functional role.
Allowed roles (exact strings): {", ".join(VALID_ROLES)}.
A product usually has 1-3 roles. For each role give a confidence ("high", "medium", "low"),
a one-sentence explanation and 1-3 evidence strings taken from the provided data.
Return one JSON object:
{{"suggestions": [{{"role": string, "confidence": string, "explanation": string, "evidence": [string]}}],
  "sourceInfo": string}}
Return only the JSON object."""


def parse_json_response(content: str) -> Optional[Dict[str, Any]]:
    """Parse model output that may be wrapped in markdown fences or prose."""
    candidates = [content.strip()]
    cleaned = re.sub(r"```(?:json)?\s*", "", content, flags=re.IGNORECASE).strip()
    candidates.append(cleaned)
    match = re.search(r"\{.*\}", cleaned, flags=re.DOTALL)
    if match:
        candidates.append(match.group(0))

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _mime_type(file_name: Optional[str]) -> str:
    name = (file_name or "").lower()
    if name.endswith(".pdf"):
        return "application/pdf"
    if name.endswith(".png"):
        return "image/png"
    if name.endswith(".webp"):
        return "image/webp"
    return "image/jpeg"


def filter_roles(roles: Any) -> List[str]:
    if not isinstance(roles, list):
        return []
    return [r for r in roles if r in VALID_ROLES]


def build_role_suggestions(data: Dict[str, Any]) -> RoleSuggestions:
    """Validate a classifier response; accepts the legacy bare `roles` list too."""
    raw = data.get("suggestions")
    if isinstance(raw, list):
        suggestions = []
        for s in raw:
            if not isinstance(s, dict) or s.get("role") not in VALID_ROLES:
                continue
            confidence = s.get("confidence")
            evidence = s.get("evidence")
            suggestions.append(RoleSuggestion(
                role=s["role"],
                confidence=confidence if confidence in VALID_CONFIDENCES else DEFAULT_CONFIDENCE,
                explanation=s.get("explanation") or "No explanation provided",
                evidence=[str(e) for e in evidence] if isinstance(evidence, list) else [],
            ))
        return RoleSuggestions(
            suggestions=suggestions,
            source_info=data.get("sourceInfo") or RoleSuggestions.source_info,
        )

    return RoleSuggestions(suggestions=[
        RoleSuggestion(
            role=role,
            confidence=DEFAULT_CONFIDENCE,
            explanation="Role suggested based on product analysis",
        )
        for role in filter_roles(data.get("roles"))
    ])


def build_label_extraction(data: Dict[str, Any], file_name: Optional[str] = None) -> LabelExtraction:
    confidence = data.get("extractionConfidence")
    analysis = {
        "npks": data.get("npks") or {"n": 0, "p": 0, "k": 0, "s": 0},
        "secondary": data.get("secondary"),
        "micros": data.get("micros"),
        "approved_uses": data.get("approvedUses") or [],
    }
    return LabelExtraction(
        product_name=data.get("productName") or None,
        form=data.get("form") or None,
        category=data.get("category") or None,
        manufacturer=data.get("manufacturer") or None,
        density_lbs_per_gal=data.get("densityLbsPerGal") or None,
        active_ingredients=data.get("activeIngredients") or None,
        application_rates=data.get("applicationRates") or None,
        mixing_instructions=data.get("mixingInstructions") or None,
        storage_handling=data.get("storageHandling") or None,
        cautions=data.get("cautions") or None,
        analysis=analysis,
        suggested_roles=filter_roles(data.get("suggestedRoles")),
        chemical_data=data.get("chemicalData") or None,
        extraction_confidence=confidence if confidence in VALID_CONFIDENCES else DEFAULT_CONFIDENCE,
        source_file_name=file_name,
    )


class LabelIntelligenceService:
    """
    Label extraction and role suggestion over an OpenAI-compatible gateway.

    A client can be injected (tests, alternate gateways); otherwise one is
    built from FARMCALC_AI_API_KEY / FARMCALC_AI_BASE_URL.
    """

    def __init__(self, client: Optional[Any] = None, model: Optional[str] = None):
        self.model = model or FARMCALC_AI_MODEL
        self.client = client

        if self.client is None and FARMCALC_AI_API_KEY:
            self.client = OpenAI(
                api_key=FARMCALC_AI_API_KEY,
                base_url=FARMCALC_AI_BASE_URL,
                max_retries=0,
            )
            logger.info(f"Label intelligence initialized with model {self.model}")
        elif self.client is None:
            logger.warning("Label intelligence disabled - FARMCALC_AI_API_KEY not configured")

    def _complete(self, messages: List[Dict[str, Any]]) -> str:
        if self.client is None:
            raise Unauthorized("AI gateway credentials are not configured")

        try:
            response = self.client.chat.completions.create(model=self.model, messages=messages)
        except openai.AuthenticationError as e:
            logger.warning(f"AI gateway rejected credentials: {e}")
            raise Unauthorized("AI gateway rejected the credentials") from e
        except openai.RateLimitError as e:
            logger.warning(f"AI gateway rate limit: {e}")
            raise RateLimitExceeded("Rate limit exceeded. Please try again later.") from e
        except openai.APIStatusError as e:
            if e.status_code == 402:
                logger.warning("AI gateway credits exhausted")
                raise CreditsExhausted("AI credits exhausted. Please add credits.") from e
            logger.error(f"AI gateway error: {e.status_code}")
            raise AdvisoryServiceError(f"AI gateway error: {e.status_code}") from e
        except openai.APIError as e:
            logger.error(f"AI gateway error: {e}")
            raise AdvisoryServiceError(f"AI gateway error: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        return content or ""

    def extract_label(
        self,
        label_text: Optional[str] = None,
        label_base64: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> LabelExtraction:
        if not label_text and not label_base64:
            raise ExtractionFailed("No label content provided")

        if label_base64:
            user_content: Any = [
                {"type": "text", "text": f"Extract product data from this label: {file_name or 'document'}"},
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{_mime_type(file_name)};base64,{label_base64}"},
                },
            ]
        else:
            user_content = f"Extract product data from this label text:\n\n{label_text}"

        content = self._complete([
            {"role": "system", "content": EXTRACTION_PROMPT},
            {"role": "user", "content": user_content},
        ])
        if len(content.strip()) < MIN_CONTENT_LENGTH:
            logger.error(f"Empty or too short label extraction response ({len(content)} chars)")
            raise ExtractionFailed(
                "AI returned an empty or invalid response. The document may be unreadable."
            )

        data = parse_json_response(content)
        if data is None:
            logger.error(f"Label extraction response is not JSON: {content[:200]}")
            raise ExtractionFailed("Failed to parse AI response. The model returned invalid JSON.")

        extraction = build_label_extraction(data, file_name)
        logger.info(f"Extracted label data for {extraction.product_name or 'unnamed product'}")
        return extraction

    def suggest_roles(self, product_info: ProductInfo) -> RoleSuggestions:
        context = []
        if product_info.product_name:
            context.append(f"Product Name: {product_info.product_name}")
        if product_info.category:
            context.append(f"Category: {product_info.category}")
        if product_info.analysis:
            a = product_info.analysis
            context.append(
                f"NPK-S Analysis: N={a.get('n') or 0}, P={a.get('p') or 0}, "
                f"K={a.get('k') or 0}, S={a.get('s') or 0}"
            )
        if product_info.active_ingredients:
            context.append(f"Active Ingredients: {product_info.active_ingredients}")

        content = self._complete([
            {"role": "system", "content": ROLE_SUGGESTION_PROMPT},
            {"role": "user", "content": "\n".join(context)},
        ])
        if not content.strip():
            raise ExtractionFailed("No content in AI response")

        data = parse_json_response(content)
        if data is None:
            logger.error(f"Role suggestion response is not JSON: {content[:200]}")
            raise ExtractionFailed("Failed to parse role suggestions")

        result = build_role_suggestions(data)
        logger.info(
            f"Suggested {len(result.suggestions)} role(s) for {product_info.product_name or 'product'}"
        )
        return result


# Singleton instance
_label_intelligence_service: Optional[LabelIntelligenceService] = None


def get_label_intelligence_service() -> LabelIntelligenceService:
    """Get or create the label intelligence service singleton."""
    global _label_intelligence_service
    if _label_intelligence_service is None:
        _label_intelligence_service = LabelIntelligenceService()
    return _label_intelligence_service
