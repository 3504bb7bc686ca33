"""Rule-based extraction of paver patio variables from free text.

Turns a customer message ("400 sqft patio, remove old concrete, tight side
gate") into the same ``VariableSelection`` the manual form produces. Only
variables the message actually mentions are set; everything else is left
for the engine to fill from the schema defaults, exactly as it does for the
form. The extractor never invents option keys outside the schema.
"""

import re
from typing import Dict, List, Optional, Pattern, Tuple

import structlog
from pydantic import BaseModel, Field

from master_pricing.models.selection import COMPLEXITY_PATH, VariableSelection
from master_pricing.models.service_config import ServiceConfig

logger = structlog.get_logger(__name__)

DEFAULT_QUANTITY = 100
TOTAL_VARIABLES = 10
MAX_CONFIDENCE = 0.95


# =============================================================================
# PATTERNS
# =============================================================================

_NUMBER = r"(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)"
_SQFT_DIRECT = re.compile(_NUMBER + r"\s*(?:sq\.?\s*ft\.?|sqft|square\s+feet|square\s+foot)")
_DIMENSIONS = re.compile(_NUMBER + r"\s*(?:x|by|×)\s*" + _NUMBER)
_SIZE_WORDS: List[Tuple[Pattern, int, str]] = [
    (re.compile(r"\b(?:small|compact|tiny)\s+patio\b"), 150, "small"),
    (re.compile(r"\b(?:medium|average)\s+patio\b"), 250, "medium"),
    (re.compile(r"\b(?:large|big|huge)\s+patio\b"), 400, "large"),
]

Rule = Tuple[Pattern, str, str]

# First matching rule wins within a variable.
VARIABLE_RULES: Dict[str, List[Rule]] = {
    "excavation.tearoutComplexity": [
        (re.compile(r"\b(?:removing|remove|demo|demolish|tear\s+out)\s+(?:the\s+)?(?:existing\s+|old\s+)?"
                    r"(?:concrete|cement|slab)\b"), "concrete", "concrete removal"),
        (re.compile(r"\b(?:removing|remove|demo|demolish|tear\s+out)\s+(?:the\s+)?(?:existing\s+|old\s+)?"
                    r"(?:asphalt|blacktop|pavement)\b"), "asphalt", "asphalt removal"),
        (re.compile(r"\b(?:removing|remove)\s+(?:the\s+)?(?:existing\s+)?(?:grass|sod|lawn|turf)\b"),
         "grass", "grass/sod removal"),
        (re.compile(r"\b(?:existing|current|old)\s+(?:concrete\s+)?(?:patio|surface)\b"),
         "concrete", "existing surface removal (assumed concrete)"),
    ],
    "siteAccess.accessDifficulty": [
        (re.compile(r"\b(?:tight|narrow|difficult|hard|limited|restricted|challenging)\s*(?:side\s+)?"
                    r"(?:access|space|gate|entrance)\b"), "difficult", "difficult access"),
        (re.compile(r"\b(?:no\s+equipment\s+access|hand\s+carry|walk\s+through)\b"),
         "difficult", "hand carry required"),
        (re.compile(r"\b(?:easy|open|wide|simple|good|direct|drive)\s*(?:access|approach)\b"),
         "easy", "easy access"),
        (re.compile(r"\b(?:driveway|front\s+yard|street\s+access)\b"), "easy", "driveway/front access"),
        (re.compile(r"\b(?:backyard|back\s+yard|behind\s+(?:the\s+)?house)\b"), "moderate", "backyard access"),
    ],
    "labor.teamSize": [
        (re.compile(r"\b(?:2|two)[\s-]*(?:person|man|people|worker)\s*(?:crew|team)\b"),
         "twoPerson", "2-person crew"),
        (re.compile(r"\b(?:small|minimal)\s+(?:crew|team)\b"), "twoPerson", "small crew"),
        (re.compile(r"\b(?:[3-9]|three|four|five)[\s-]*(?:person|man|people|worker)\s*(?:crew|team)\b"),
         "threePlus", "3+ person crew"),
        (re.compile(r"\b(?:full|standard|normal|large)\s+(?:crew|team)\b"), "threePlus", "full crew"),
    ],
    "excavation.equipmentRequired": [
        (re.compile(r"\b(?:jackhammer|pneumatic|heavy\s+equipment|heavy\s+machinery|excavator|bobcat|skid\s+steer)\b"),
         "heavyMachinery", "heavy machinery"),
        (re.compile(r"\b(?:light\s+machinery|mini\s+excavator|compact\s+equipment)\b"),
         "lightMachinery", "light machinery"),
        (re.compile(r"\b(?:attachments?|demo\s+hammer|power\s+tools|electric\s+tools)\b"),
         "attachments", "small attachments"),
        (re.compile(r"\b(?:hand\s+tools|manual\s+labor|shovels?)\b"), "handTools", "hand tools"),
    ],
    "materials.paverStyle": [
        (re.compile(r"\b(?:premium|high[\s-]end|luxury|natural\s+stone|designer)\b"),
         "premium", "premium materials"),
        (re.compile(r"\b(?:flagstone|bluestone|travertine)\b"), "premium", "natural stone"),
        (re.compile(r"\b(?:basic|standard|budget|economy)\s+pavers?\b|\bconcrete\s+pavers?\b"),
         "standard", "standard pavers"),
    ],
    "materials.cuttingComplexity": [
        (re.compile(r"\b(?:straight|rectangular|square|simple)\s+(?:design|shape|edges?)\b"),
         "minimal", "straight edges"),
        (re.compile(r"\b(?:intricate|lots\s+of\s+cutting|custom\s+shape|complex\s+(?:cuts|cutting|shape|design))\b"),
         "complex", "intricate cutting"),
        (re.compile(r"\b(?:curves?|curved|angles|angled|borders?)\b"), "moderate", "curves/angles"),
    ],
    "materials.patternComplexity": [
        (re.compile(r"\b(?:complex\s+pattern|multiple\s+patterns|mosaic)\b"), "extensive", "complex pattern"),
        (re.compile(r"\b(?:herringbone|basket\s*weave|circular|radial)\b"), "some", "decorative pattern"),
        (re.compile(r"\b(?:simple|basic|running\s+bond|standard)\s+pattern\b"), "minimal", "simple pattern"),
    ],
    "siteAccess.obstacleRemoval": [
        (re.compile(r"\b(?:no\s+obstacles|clear\s+area|open\s+space)\b"), "none", "clear area"),
        (re.compile(r"\b(?:trees?|stumps?|large\s+shrubs|structures?|shed|major\s+obstacles)\b"),
         "major", "trees/structures"),
        (re.compile(r"\b(?:shrubs|bushes|small\s+plants|minor\s+landscaping|minor\s+obstacles)\b"),
         "minor", "shrubs/plants"),
    ],
    COMPLEXITY_PATH: [
        (re.compile(r"\bextreme(?:ly)?\s+(?:complex\s+)?(?:project|job)\b"), "extreme", "extreme project"),
        (re.compile(r"\bcomplex\s+(?:project|job)\b"), "complex", "complex project"),
        (re.compile(r"\bstandard\s+(?:project|job)\b"), "standard", "standard project"),
        (re.compile(r"\b(?:simple|straightforward|easy)\s+(?:project|job)\b"), "simple", "simple project"),
    ],
}

# Informational complexity score, keyed by (path, option) found in the message.
_COMPLEXITY_FACTORS: Dict[Tuple[str, str], Tuple[float, str]] = {
    ("excavation.tearoutComplexity", "concrete"): (0.2, "concrete removal"),
    ("excavation.tearoutComplexity", "asphalt"): (0.3, "asphalt removal"),
    ("siteAccess.accessDifficulty", "difficult"): (0.2, "difficult access"),
    ("materials.cuttingComplexity", "complex"): (0.15, "complex cutting"),
    ("materials.cuttingComplexity", "moderate"): (0.05, "moderate cutting"),
    ("materials.patternComplexity", "extensive"): (0.1, "complex patterns"),
    ("siteAccess.obstacleRemoval", "major"): (0.1, "major obstacles"),
}


# =============================================================================
# RESULT MODELS
# =============================================================================


class ExtractionResult(BaseModel):
    """Outcome of one extraction."""

    quantity: float
    selection: VariableSelection
    confidence: float = Field(..., ge=0, le=1)
    extracted: List[str] = Field(default_factory=list, description="What was recognised")
    defaults_used: List[str] = Field(default_factory=list, description="Variables left to schema defaults")
    complexity_score: float = Field(default=1.0, description="Informational, not priced")
    complexity_factors: List[str] = Field(default_factory=list)

    @property
    def extracted_count(self) -> int:
        return len(self.extracted)


class ExtractionValidation(BaseModel):
    is_valid: bool
    missing_info: List[str] = Field(default_factory=list)
    clarifying_questions: List[str] = Field(default_factory=list)


# =============================================================================
# EXTRACTION
# =============================================================================


def _to_number(digits: str) -> float:
    return float(digits.replace(",", ""))


def _extract_quantity(text: str, default_quantity: float) -> Tuple[float, Optional[str]]:
    direct = _SQFT_DIRECT.search(text)
    if direct:
        quantity = _to_number(direct.group(1))
        return quantity, f"Square footage: {quantity:g} sqft (direct)"
    dimensions = _DIMENSIONS.search(text)
    if dimensions:
        width, length = _to_number(dimensions.group(1)), _to_number(dimensions.group(2))
        quantity = width * length
        return quantity, f"Square footage: {quantity:g} sqft ({width:g}x{length:g})"
    for pattern, quantity, size in _SIZE_WORDS:
        if pattern.search(text):
            return float(quantity), f"Square footage: {quantity} sqft (estimated {size})"
    return float(default_quantity), None


def extract_variables(
    message: str,
    default_quantity: float = DEFAULT_QUANTITY,
    config: Optional[ServiceConfig] = None
) -> ExtractionResult:
    """Extract a quantity and variable selection from a free-text message.

    Args:
        message: Customer or estimator description of the job
        default_quantity: Quantity used when the message states none
        config: When given, matches whose option key the config does not
            define are discarded

    Returns:
        ExtractionResult with a selection keyed by schema paths.
    """
    text = (message or "").lower()
    extracted: List[str] = []
    defaults_used: List[str] = []
    choices: Dict[str, str] = {}

    quantity, note = _extract_quantity(text, default_quantity)
    if note:
        extracted.append(note)
    else:
        defaults_used.append(f"Square footage: {quantity:g} sqft (default)")

    for path, rules in VARIABLE_RULES.items():
        match = next(((key, label) for pattern, key, label in rules if pattern.search(text)), None)
        if match is not None and config is not None:
            definition = config.find_variable(path)
            if definition is None or match[0] not in definition.options:
                logger.debug("extraction_match_discarded", path=path, key=match[0])
                match = None
        if match is None:
            defaults_used.append(path)
            continue
        key, label = match
        choices[path] = key
        extracted.append(f"{path}: {key} ({label})")

    score = 1.0
    factors: List[str] = []
    for path, key in choices.items():
        factor = _COMPLEXITY_FACTORS.get((path, key))
        if factor:
            score += factor[0]
            factors.append(factor[1])
    score = min(1.5, score)

    confidence = min(MAX_CONFIDENCE, 0.2 + len(extracted) / TOTAL_VARIABLES * 0.75)

    logger.info(
        "variables_extracted",
        quantity=quantity,
        extracted=len(extracted),
        defaults=len(defaults_used),
        confidence=round(confidence, 3)
    )

    return ExtractionResult(
        quantity=quantity,
        selection=VariableSelection(choices=choices),
        confidence=confidence,
        extracted=extracted,
        defaults_used=defaults_used,
        complexity_score=score,
        complexity_factors=factors
    )


def validate_extraction(result: ExtractionResult) -> ExtractionValidation:
    """Decide whether an extraction is good enough to quote from."""
    missing_info: List[str] = []
    clarifying_questions: List[str] = []

    if result.quantity <= 0:
        missing_info.append("Square footage")
        clarifying_questions.append("What is the square footage of your patio project?")

    if result.confidence < 0.4:
        clarifying_questions.append(
            "Could you provide more details about your patio project? For example, what needs "
            "to be removed (grass, concrete, etc.) and how is the access to the area?"
        )

    return ExtractionValidation(
        is_valid=not missing_info and result.confidence >= 0.3,
        missing_info=missing_info,
        clarifying_questions=clarifying_questions
    )
