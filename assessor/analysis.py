"""Analysis pipeline: rubric + submission -> one model call -> validated result.

Architecture
------------
``AnalysisPipeline.analyze`` makes at most one collaborator call:

1. keep only reference files tagged with the submission's industry;
2. render a composite prompt: instruction template, submission fields,
   founder answers grouped by category, reference data, and the rubric
   serialised as YAML;
3. call the collaborator under a wall-clock timeout;
4. validate the reply against :class:`AnalysisResult`; if that fails, retry
   validation once on the body of a fenced ```json block inside the reply.

Any failure in steps 3-4 (timeout, transport error, malformed JSON, schema
mismatch) yields :func:`placeholder_result` instead of an exception.
Cancelling the awaiting task abandons the call and nothing is returned.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

import yaml
from pydantic import ValidationError

from assessor.llm import Collaborator, LLMCallError
from assessor.models import (
    AnalysisResult,
    Completeness,
    DataQuality,
    QualitativeForecast,
    Recommendation,
    ReferenceFile,
    RiskAssessment,
    RiskDimension,
    RiskLevel,
    RubricConfig,
    Submission,
)
from assessor.questions import question_id
from assessor.reference_data import DEFAULT_CSV_ROW_LIMIT, format_reference_section, select_for_industry
from assessor.utils import extract_fenced_json, json_parse

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0

# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

SYSTEM_PROMPT = (
    "You are an AI assistant that analyzes startup submissions. "
    "Always respond with valid JSON only, no additional text."
)

DEFAULT_ANALYSIS_PROMPT = """\
You are a decision-support assistant for a bank's startup evaluation desk. \
Analyze the startup submission below against the weighted criteria \
configuration and produce structured scoring and a funding recommendation.

Scoring rules:
- Score every criterion from 0 to 5 using the score levels in the criteria \
configuration. Use 0 and set "insufficient_data": true when the submission \
gives you nothing to judge the criterion on.
- category_score is the weighted average of its criteria scores.
- overall_score is the weighted average of the category scores (0.0-5.0).
- recommendation must follow the decision_mapping thresholds.
- Cite concrete evidence from the submission, the founder responses, or the \
reference data in supporting_evidence.

Risk levels: LOW, MEDIUM, HIGH. Recommendation: FUND, PARTIAL, DECLINE. \
Data completeness: COMPLETE, PARTIAL, INCOMPLETE.

Respond with ONLY a single JSON object:
{
  "overall_score": <float 0.0-5.0>,
  "category_scores": [
    {
      "category_name": "<name from configuration>",
      "category_weight": <float>,
      "category_score": <float 0.0-5.0>,
      "category_reasoning": "<2-3 sentences>",
      "criteria_scores": [
        {
          "criterion_name": "<name from configuration>",
          "criterion_weight": <float>,
          "score": <integer 0-5>,
          "reasoning": "<1-2 sentences>",
          "supporting_evidence": ["<evidence>"],
          "insufficient_data": <true|false>
        }
      ]
    }
  ],
  "risk_assessment": {
    "privacy_security": {"level": "<LOW|MEDIUM|HIGH>", "description": "<text>", "concerns": ["<text>"]},
    "compliance": {"level": "<LOW|MEDIUM|HIGH>", "description": "<text>", "concerns": ["<text>"]},
    "market": {"level": "<LOW|MEDIUM|HIGH>", "description": "<text>", "concerns": ["<text>"]},
    "technical": {"level": "<LOW|MEDIUM|HIGH>", "description": "<text>", "concerns": ["<text>"]}
  },
  "recommendation": "<FUND|PARTIAL|DECLINE>",
  "recommendation_reasoning": "<2-4 sentences>",
  "key_strengths": ["<text>"],
  "key_concerns": ["<text>"],
  "data_quality": {
    "completeness": "<COMPLETE|PARTIAL|INCOMPLETE>",
    "gaps": ["<missing information>"],
    "impact_on_analysis": "<text>"
  },
  "qualitative_forecast": {
    "short_term_outlook": "<6-12 months>",
    "medium_term_prospects": "<1-3 years>",
    "long_term_potential": "<3-5+ years>",
    "key_success_factors": ["<text>"],
    "potential_challenges": ["<text>"],
    "market_trends_impact": "<text>"
  }
}
"""

INDUSTRY_PROMPT = """\
You are an AI assistant that analyzes business plans to determine the industry category.

Based on the following business plan document, determine which industry category \
this startup belongs to.

Available industry categories: Tech, Energy

Return ONLY a JSON object: {"industry": "Tech"} or {"industry": "Energy"}.
If you cannot determine the industry clearly, return: {"industry": null}

Business Plan Content:
"""

_INDUSTRY_ALIASES = {"tech": "Tech", "technology": "Tech", "energy": "Energy"}

_ENERGY_KEYWORDS = ("energy", "solar", "wind", "renewable", "power", "electricity")
_TECH_KEYWORDS = ("software", "technology", "tech", "app", "platform", "digital")


# ---------------------------------------------------------------------------
# Placeholder
# ---------------------------------------------------------------------------

PLACEHOLDER_REASONING = (
    "This is a placeholder analysis: the automated evaluation could not be completed. "
    "Re-run the analysis once the analysis service is reachable."
)


def placeholder_result() -> AnalysisResult:
    """Fixed result returned whenever the collaborator cannot be used."""
    return AnalysisResult(
        overall_score=3.5,
        category_scores=[],
        risk_assessment=RiskAssessment(
            privacy_security=RiskDimension(
                level=RiskLevel.MEDIUM, description="Standard privacy considerations apply",
            ),
            compliance=RiskDimension(
                level=RiskLevel.LOW, description="No major compliance issues identified",
            ),
            market=RiskDimension(level=RiskLevel.MEDIUM, description="Moderate market risks"),
            technical=RiskDimension(level=RiskLevel.LOW, description="Technically feasible"),
        ),
        recommendation=Recommendation.PARTIAL,
        recommendation_reasoning=PLACEHOLDER_REASONING,
        key_strengths=["Problem statement is clear", "Solution addresses identified problem"],
        key_concerns=["Limited market data provided", "Early stage of development"],
        data_quality=DataQuality(
            completeness=Completeness.PARTIAL,
            gaps=["Financial projections", "Detailed market analysis"],
            impact_on_analysis="Analysis is based on available information",
        ),
        qualitative_forecast=QualitativeForecast(
            short_term_outlook=(
                "In the next 6-12 months the startup is expected to focus on product development "
                "and initial market validation."
            ),
            medium_term_prospects=(
                "Over 1-3 years growth depends on validating market fit, securing additional "
                "funding and scaling operations."
            ),
            long_term_potential=(
                "In the long term the startup could reach a leading position if it keeps its "
                "competitive advantages and adapts to market conditions."
            ),
            key_success_factors=[
                "Market validation and customer acquisition",
                "Sustainable revenue model",
                "Strong team execution",
                "Competitive differentiation",
            ],
            potential_challenges=[
                "Market competition and saturation",
                "Funding and cash flow management",
                "Scaling operations efficiently",
                "Regulatory and compliance requirements",
            ],
            market_trends_impact=(
                "Emerging technologies and shifting customer behaviour may open new segments, "
                "while economic and regulatory changes could slow growth."
            ),
        ),
    )


# ---------------------------------------------------------------------------
# Prompt builders
# ---------------------------------------------------------------------------


def serialize_rubric(config: RubricConfig) -> str:
    return yaml.safe_dump(config.model_dump(mode="json"), sort_keys=False, allow_unicode=True)


def format_criteria_answers(answers: dict[str, str], config: RubricConfig) -> str:
    """Founder answers grouped by category in rubric order; blank answers omitted."""
    if not answers:
        return ""
    sections: list[str] = []
    for category in config.categories:
        lines: list[str] = []
        for criterion in category.criteria:
            answer = (answers.get(question_id(category.name, criterion.name)) or "").strip()
            if not answer:
                continue
            lines.append(f"Criterion: {criterion.name}\nFounder's Response:\n{answer}")
        if lines:
            sections.append(f"--- {category.name} ---\n\n" + "\n\n".join(lines))
    return "\n\n".join(sections)


def build_prompt(
    submission: Submission,
    config: RubricConfig,
    reference_files: Sequence[ReferenceFile] = (),
    template: str = DEFAULT_ANALYSIS_PROMPT,
    csv_row_limit: int = DEFAULT_CSV_ROW_LIMIT,
) -> str:
    """Assemble the composite analysis prompt.

    Args:
        submission: The founder's submission.
        config: Rubric to score against; serialised verbatim into the prompt.
        reference_files: Files already filtered to the submission's industry.
        template: Static instruction text placed first.
        csv_row_limit: Maximum CSV data rows included per reference file.
    """
    stage = submission.stage.value.lower().replace("_", " ")
    sections: list[str] = [
        template.rstrip(),
        "=== SUBMISSION DATA ===\n"
        f"Startup Name: {submission.startup_name}\n"
        f"Industry: {submission.industry}\n"
        f"Stage: {stage}\n\n"
        f"Problem Statement:\n{submission.problem_statement}\n\n"
        f"Proposed Solution:\n{submission.proposed_solution}",
    ]

    answers = format_criteria_answers(submission.criteria_answers, config)
    if answers:
        sections.append(
            "=== FOUNDER RESPONSES TO EVALUATION QUESTIONS ===\n"
            "The founder has provided the following responses to evaluation questions based on "
            "the criteria. Use these responses to inform your analysis:\n\n" + answers
        )

    references = format_reference_section(list(reference_files), csv_row_limit)
    if references:
        sections.append(references)

    sections.append("=== CRITERIA CONFIGURATION ===\n" + serialize_rubric(config).rstrip())

    closing = (
        "Please analyze this submission according to the criteria and provide your analysis "
        "in the specified JSON format."
    )
    if answers:
        closing += (
            " Pay special attention to the founder's responses to the evaluation questions, as they "
            "provide detailed information relevant to each criterion."
        )
    if references:
        closing += (
            " IMPORTANT: Use the industry statistics and data files provided above to inform your "
            "analysis, especially for market opportunity assessment, competitive analysis, and "
            "industry benchmarks. Compare the startup's claims against the industry data provided."
        )
    sections.append(closing)
    return "\n\n".join(sections)


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def parse_response(text: str) -> AnalysisResult:
    """Validate a model reply, retrying once on a fenced JSON block.

    Raises:
        ValidationError: neither the reply nor its fenced block is a valid result.
    """
    try:
        return AnalysisResult.model_validate_json((text or "").strip())
    except ValidationError:
        fenced = extract_fenced_json(text)
        if fenced is None:
            raise
        log.debug("Direct parse failed; retrying on fenced JSON block")
        return AnalysisResult.model_validate_json(fenced)


# ---------------------------------------------------------------------------
# Human-readable rendering
# ---------------------------------------------------------------------------


def _bullets(items: list[str]) -> list[str]:
    return [f"- {item}" for item in items] or ["- (none)"]


def format_analysis(result: AnalysisResult) -> str:
    """Stable plain-text rendering of every field of a result (display/export)."""
    out: list[str] = [
        "=== AI Analysis Results ===",
        "",
        f"Overall Score: {result.overall_score}/5.0",
        f"Recommendation: {result.recommendation.value}",
        "",
        "Recommendation Reasoning:",
        result.recommendation_reasoning,
        "",
        "=== Category Scores ===",
    ]
    for cat in result.category_scores:
        out.append("")
        out.append(f"{cat.category_name} (Weight: {cat.category_weight}, Score: {cat.category_score}/5.0)")
        out.append(cat.category_reasoning)
        for crit in cat.criteria_scores:
            flag = " [insufficient data]" if crit.insufficient_data else ""
            out.append(
                f"  - {crit.criterion_name} (Weight: {crit.criterion_weight}): "
                f"{crit.score}/5{flag} ({crit.reasoning})"
            )
            for evidence in crit.supporting_evidence:
                out.append(f"      * {evidence}")

    out += ["", "=== Risk Assessment ==="]
    risks = result.risk_assessment
    for label, dim in (
        ("Privacy/Security", risks.privacy_security),
        ("Compliance", risks.compliance),
        ("Market", risks.market),
        ("Technical", risks.technical),
    ):
        out.append(f"{label}: {dim.level.value} - {dim.description}")
        for concern in dim.concerns:
            out.append(f"  * {concern}")

    out += ["", "=== Key Strengths ===", *_bullets(result.key_strengths)]
    out += ["", "=== Key Concerns ===", *_bullets(result.key_concerns)]

    dq = result.data_quality
    out += [
        "", "=== Data Quality ===",
        f"Completeness: {dq.completeness.value}",
        "Gaps:", *_bullets(dq.gaps),
        f"Impact on Analysis: {dq.impact_on_analysis}",
    ]

    fc = result.qualitative_forecast
    if fc is not None:
        out += [
            "", "=== Qualitative Forecast ===",
            "", "Short-term Outlook (6-12 months):", fc.short_term_outlook,
            "", "Medium-term Prospects (1-3 years):", fc.medium_term_prospects,
            "", "Long-term Potential (3-5+ years):", fc.long_term_potential,
            "", "Key Success Factors:", *_bullets(fc.key_success_factors),
            "", "Potential Challenges:", *_bullets(fc.potential_challenges),
            "", "Market Trends Impact:", fc.market_trends_impact,
        ]
    return "\n".join(out) + "\n"


# ---------------------------------------------------------------------------
# Industry detection
# ---------------------------------------------------------------------------


def detect_industry_by_keywords(text: str) -> str | None:
    lowered = (text or "").lower()
    if any(k in lowered for k in _ENERGY_KEYWORDS):
        return "Energy"
    if any(k in lowered for k in _TECH_KEYWORDS):
        return "Tech"
    return None


def normalize_industry(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    return _INDUSTRY_ALIASES.get(value.strip().lower())


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class AnalysisPipeline:
    """Runs one evaluation pass; never raises for collaborator problems."""

    def __init__(
        self,
        client: Collaborator | None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        csv_row_limit: int = DEFAULT_CSV_ROW_LIMIT,
        prompt_template: str = DEFAULT_ANALYSIS_PROMPT,
        detection_chars: int = 10_000,
    ):
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.csv_row_limit = csv_row_limit
        self.prompt_template = prompt_template
        self.detection_chars = detection_chars

    async def _complete(self, prompt: str) -> str:
        if self.client is None:
            raise LLMCallError("No analysis collaborator configured")
        return await asyncio.wait_for(
            self.client.complete(SYSTEM_PROMPT, prompt), timeout=self.timeout_seconds,
        )

    async def analyze(
        self,
        submission: Submission,
        config: RubricConfig,
        reference_files: Sequence[ReferenceFile] = (),
    ) -> AnalysisResult:
        """Evaluate *submission* against *config*; falls back to the placeholder."""
        relevant = select_for_industry(list(reference_files), submission.industry)
        try:
            prompt = build_prompt(
                submission, config, relevant,
                template=self.prompt_template, csv_row_limit=self.csv_row_limit,
            )
            text = await self._complete(prompt)
            result = parse_response(text)
        except TimeoutError:
            log.warning(
                "Analysis of %s timed out after %.0fs; using placeholder",
                submission.startup_name, self.timeout_seconds,
            )
        except LLMCallError as exc:
            log.warning("Analysis of %s failed: %s; using placeholder", submission.startup_name, exc)
        except ValidationError as exc:
            log.warning(
                "Analysis of %s returned an unusable response (%d errors); using placeholder",
                submission.startup_name, exc.error_count(),
            )
        except Exception:
            log.exception("Unexpected analysis failure for %s; using placeholder", submission.startup_name)
        else:
            log.info(
                "Analysed %s: %.2f -> %s",
                submission.startup_name, result.overall_score, result.recommendation.value,
            )
            return result
        return placeholder_result()

    async def detect_industry(self, document_text: str) -> str | None:
        """Ask the collaborator for the industry; keyword heuristic on any failure."""
        prompt = INDUSTRY_PROMPT + (document_text or "")[: self.detection_chars]
        try:
            text = await self._complete(prompt)
        except Exception as exc:
            log.info("Industry detection fell back to keywords: %s", exc)
            return detect_industry_by_keywords(document_text)
        raw = json_parse(text, None)
        if raw is None:
            raw = json_parse(extract_fenced_json(text), None)
        if not isinstance(raw, dict):
            return detect_industry_by_keywords(document_text)
        return normalize_industry(raw.get("industry"))
