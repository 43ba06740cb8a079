"""Founder questionnaire generation from a rubric.

One question per criterion, in rubric order. The wording comes from an
ordered rule table: the first rule whose keyword appears in the criterion
name (case-insensitive) wins, and a rule may pick industry-specific wording
from the owning category's name. Criteria no rule recognises get a generic
question built from their description.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from assessor.models import Category, Criterion, RubricConfig

FALLBACK_TEMPLATE = "Please provide information about: {description}"


@dataclass(frozen=True)
class Question:
    id: str
    category: str
    criterion: str
    question_text: str
    description: str
    weight: float


def question_id(category: str, criterion: str) -> str:
    return f"{category}_{criterion}"


@dataclass(frozen=True)
class QuestionRule:
    """Keyword predicate on the criterion name plus its question wording.

    ``by_category`` holds ``(category keyword, template)`` pairs checked in
    order before falling back to ``template``. Templates may use
    ``{category}`` (lower-cased category name) and ``{description}``.
    """
    topic: str
    keywords: tuple[str, ...]
    template: str
    by_category: tuple[tuple[str, str], ...] = field(default=())

    def matches(self, criterion: Criterion) -> bool:
        name = criterion.name.casefold()
        return any(k.casefold() in name for k in self.keywords)

    def render(self, category: Category, criterion: Criterion) -> str:
        cat_name = category.name.casefold()
        template = self.template
        for keyword, variant in self.by_category:
            if keyword.casefold() in cat_name:
                template = variant
                break
        return template.format(category=category.name.lower(), description=criterion.description)


QUESTION_RULES: tuple[QuestionRule, ...] = (
    # Team & governance
    QuestionRule(
        "team_experience", ("Industry Experience", "Technical Team Experience"),
        "Describe your core team's relevant industry experience. Include years of experience, "
        "previous companies, and track record in {category}.",
    ),
    QuestionRule(
        "equity_structure", ("Equity Structure",),
        "Describe your equity structure. Include founder ownership percentages, investor equity, "
        "and any concerns about dilution or proxy holding disputes.",
    ),
    QuestionRule(
        "governance", ("Governance Structure",),
        "Describe your governance mechanisms. Include board composition, risk control processes, "
        "compliance departments, and oversight structures.",
    ),
    # Business & market
    QuestionRule(
        "customer_validation", ("Customer Validation",),
        "Describe your customer validation. Include paying customers, repurchase rates, "
        "customer unit price, and retention metrics.",
        by_category=(
            ("Energy", "Describe your customer validation. Include paying customers, Power Purchase "
                       "Agreements (PPA), repurchase rates, and customer feedback."),
            ("Tech", "Describe your customer validation. Include paying customers (SaaS MRR/ARR), "
                     "repurchase rates, customer unit price, and retention metrics."),
        ),
    ),
    QuestionRule(
        "market_opportunity", ("Market Opportunity",),
        "Describe your market opportunity. Include market size, growth rate, target market dynamics, "
        "and policy support for your sector.",
    ),
    QuestionRule(
        "patents", ("Number of Patents",),
        "Describe your intellectual property portfolio. Include number of patents filed, pending, "
        "or granted, and their relevance to your product.",
    ),
    QuestionRule(
        "competitive_barriers", ("Competitive Barriers",),
        "Describe your competitive advantages. Include technology differentiation, exclusive resources, "
        "first-mover advantages, and core capabilities vs competitors.",
    ),
    # Product & technology
    QuestionRule(
        "innovation", ("Innovation Level",),
        "Describe the innovation level of your product/technology. Explain what makes it unique "
        "and how it provides a competitive advantage.",
    ),
    QuestionRule(
        "technical_feasibility", ("Technical Feasibility",),
        "Describe the technical feasibility of your solution. Include development status, "
        "technical validation, and implementation challenges.",
        by_category=(
            ("Energy", "Describe the technical feasibility of your energy/cleantech solution. Include "
                       "infrastructure requirements, implementation challenges, and technical validation."),
            ("Tech", "Describe the technical feasibility of your software/hardware solution. Include "
                     "development capability, technical architecture, and implementation status."),
        ),
    ),
    QuestionRule(
        "scalability", ("Scalability",),
        "Describe how your solution can scale. Include scalability plans, infrastructure requirements, "
        "and growth capacity.",
        by_category=(
            ("Energy", "Describe how your energy solution can scale. Include infrastructure scalability, "
                       "production capacity, and expansion plans."),
            ("Tech", "Describe how your technology solution can scale. Include cloud infrastructure, "
                     "architecture scalability, and scaling plans."),
        ),
    ),
    # Financial & cash flow
    QuestionRule(
        "cash_flow", ("Cash Flow Health",),
        "Describe your cash flow situation. Include operating cash flow status (positive/negative), "
        "cash runway (months of operations), and cash reserves.",
    ),
    QuestionRule(
        "cost_control", ("Cost Control",),
        "Describe your cost control. Include Customer Acquisition Cost (CAC), Lifetime Value (LTV), "
        "and cost management strategies.",
        by_category=(
            ("Energy", "Describe your cost control capabilities. Include Levelized Cost of Energy (LCOE), "
                       "operational efficiency, and cost management strategies."),
            ("Tech", "Describe your cost control metrics. Include Customer Acquisition Cost (CAC), "
                     "Lifetime Value (LTV), and LTV/CAC ratio (ideally > 3 for SaaS)."),
        ),
    ),
    QuestionRule(
        "financing_history", ("Financing History",),
        "Describe your financing history. Include previous investors' background, financing "
        "timeliness, and funding rounds.",
        by_category=(
            ("Energy", "Describe your financing history. Include previous investors' background, financing "
                       "timeliness, government grants/subsidies access, and funding rounds."),
            ("Tech", "Describe your financing history. Include previous investors' background, financing "
                     "timeliness, presence of earnout clauses, and funding rounds."),
        ),
    ),
    # Risk & compliance
    QuestionRule(
        "policy", ("Policy Considerations",),
        "Describe alignment with government policies. Include subsidies, incentives, regulatory "
        "support, and policy considerations relevant to your industry.",
    ),
    QuestionRule(
        "regulatory_risk", ("Regulatory/Compliance Risk",),
        "Describe your regulatory compliance status. Include permits, environmental regulations, "
        "energy policy considerations, and compliance measures.",
    ),
    QuestionRule(
        "privacy_risk", ("Privacy/Security Risk",),
        "Describe your data privacy and cybersecurity measures. Include GDPR/CCPA compliance, "
        "security protocols, and data protection strategies.",
    ),
    QuestionRule(
        "policy_compliance_risk", ("Policy Compliance Risk",),
        "Describe your policy compliance. Include data security compliance, industry regulatory "
        "policy alignment, and compliance measures.",
    ),
    QuestionRule(
        "environmental_impact", ("Environmental Impact",),
        "Describe your environmental impact. Include environmental impact assessment, sustainability "
        "measures, and carbon footprint reduction strategies.",
    ),
    QuestionRule(
        "legal_risk", ("Legal Risk",),
        "Describe legal risks and mitigation. Include intellectual property disputes, labor "
        "compliance, and any legal concerns.",
        by_category=(
            ("Energy", "Describe legal risks and mitigation. Include intellectual property disputes, "
                       "land use rights, project contracts, and labor compliance."),
            ("Tech", "Describe legal risks and mitigation. Include intellectual property disputes, "
                     "labor compliance, and open-source licensing issues."),
        ),
    ),
    QuestionRule(
        "collateral", ("Collateral Guarantee",),
        "Describe collateral and guarantees. Include founder joint guarantees, core technology "
        "pledge possibilities, and asset-backed security options.",
    ),
)


def rule_for(criterion: Criterion, rules: tuple[QuestionRule, ...] = QUESTION_RULES) -> QuestionRule | None:
    for rule in rules:
        if rule.matches(criterion):
            return rule
    return None


def question_text(
    category: Category, criterion: Criterion, rules: tuple[QuestionRule, ...] = QUESTION_RULES,
) -> str:
    rule = rule_for(criterion, rules)
    if rule is None:
        return FALLBACK_TEMPLATE.format(description=criterion.description)
    return rule.render(category, criterion)


def generate_questions(
    config: RubricConfig | None, rules: tuple[QuestionRule, ...] = QUESTION_RULES,
) -> list[Question]:
    """One question per criterion, preserving category and criterion order."""
    if config is None:
        return []
    return [
        Question(
            id=question_id(category.name, criterion.name),
            category=category.name,
            criterion=criterion.name,
            question_text=question_text(category, criterion, rules),
            description=criterion.description,
            weight=criterion.weight,
        )
        for category in config.categories
        for criterion in category.criteria
    ]


def unanswered(questions: list[Question], answers: dict[str, str]) -> list[Question]:
    """Questions whose answer is missing or blank."""
    return [q for q in questions if not (answers.get(q.id) or "").strip()]
