"""Intake -> prompt rendering.

Everything here is a pure function of the intake record: no I/O, no clock, so
the same intake always renders to the same text.
"""
import re
from lenny_listens.models import IntakeRecord

_DOMAIN_SUFFIX = re.compile(r"\.(com|io|co|ai|org|net)$", re.IGNORECASE)

FEATURE_REQUEST = ("feature_request", "feature requests")
NEW_PRODUCT_DISCOVERY = ("new_product_discovery", "new product discovery")
EXISTING_FEATURE_FEEDBACK = ("existing_feature_feedback", "existing feature feedback")

METHODOLOGY = """Use Lenny Rachitsky's interviewing methodology:

THREE-LAYER APPROACH:
1. Origin Story - Start with how they discovered the problem or need
2. Framework - Extract their mental model, criteria, and tradeoffs
3. Application - Get specific examples and concrete details

CORE TECHNIQUES:
- "Pull the thread" - When something interesting emerges, dig deeper
- Find tensions - Explore contradictions and tradeoffs
- Seek specifics - Ask for concrete examples for broad claims
- Pause and summarize - Periodically reflect back what you've heard

VOICE:
- Warm, curious, intellectually engaged
- Use phrases like "I'm curious...", "That's really interesting...", "Can you give me a specific example?"
- Take a student posture, not an expert position"""

_LABELS = {
    "Feature Requests": FEATURE_REQUEST,
    "Product Discovery": NEW_PRODUCT_DISCOVERY,
    "Feature Feedback": EXISTING_FEATURE_FEEDBACK,
}

def company_name(domain: str | None, fallback: str = "Company") -> str:
    name = _DOMAIN_SUFFIX.sub("", domain or "")
    return name or fallback

def _goal_and_context(intake: IntakeRecord) -> tuple[str, list[str], list[str]]:
    """Research goal, substituted context lines and exploration bullets for the use case."""
    uc = intake.use_case
    if uc in NEW_PRODUCT_DISCOVERY:
        return ("validate a new product concept",
                [f"Target audience: {intake.market_or_audience or 'potential customers'}",
                 f"Hypothesis to validate: {intake.hypothesis or 'the product solves a real problem'}"],
                ["Whether users have the problem this product solves",
                 "How they currently deal with this problem",
                 "Their reaction to the product concept",
                 "What would make them want to use it"])
    if uc in FEATURE_REQUEST:
        return ("understand feature requests and user needs",
                [f"Problem users are trying to solve: {intake.problem_to_solve or 'unspecified'}",
                 f"Current workaround: {intake.current_workaround or 'unknown'}"],
                ["The specific pain points driving this request",
                 "How they currently work around the limitation",
                 "What an ideal solution would look like",
                 "How important this is relative to other needs"])
    if uc in EXISTING_FEATURE_FEEDBACK:
        return ("get feedback on an existing feature",
                [f"Feature: {intake.feature_name or 'unspecified'}",
                 f"Aspects to explore: {intake.feedback_aspects or 'general feedback'}"],
                ["How they use this feature today",
                 "What works well and what doesn't",
                 "Specific frustrations or delights",
                 "Ideas for improvement"])
    return uc, [], []

def build_perspective_description(intake: IntakeRecord) -> str:
    name = company_name(intake.company_domain)
    goal, context, explore = _goal_and_context(intake)
    if context:
        body = "\n".join(context) + "\n\nExplore:\n" + "\n".join(f"- {line}" for line in explore)
    else:
        body = "Explore the user's experience and needs in depth."
    return (f'Create a research interview called "Lenny Listens: {name}" to {goal}.\n\n'
            f"{body}\n\n"
            f"{METHODOLOGY}")

def build_interview_prompt(intake: IntakeRecord) -> str:
    """Short single-paragraph prompt handed to the Perspective signup flow."""
    name = company_name(intake.company_domain, fallback="my company")
    goal, context, _ = _goal_and_context(intake)
    lead = f"Create a customer research interview for {name} to {goal}."
    if context:
        lead += " " + "\n".join(context)
    return (f"{lead}\n\n"
            "Use Lenny Rachitsky's interviewing methodology: pull the thread on interesting topics, "
            "find tensions and contradictions, seek specific examples, and maintain a warm, curious tone.")

def use_case_label(use_case: str) -> str:
    for label, spellings in _LABELS.items():
        if use_case in spellings:
            return label
    return "Customer Research"
