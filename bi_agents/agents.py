"""Agent personas and prompt construction.

Every persona runs on the same provider with a distinct system prompt.
Prompt wording is configuration; only the structure matters here.
"""

from typing import Dict, Iterable, List, Optional, Sequence

from bi_agents.models import Agent, FileSummary

_FORMAT_FOOTER = (
    "CRITICAL: You MUST reference specific data points and metrics from the "
    "attached files when they are provided."
)

AGENTS: List[Agent] = [
    Agent(
        id="strategic-planning",
        display_name="Strategic Planning",
        description=(
            "Expert strategy consultant specializing in competitive analysis, "
            "growth loops, pricing, and unit economics-driven product strategy"
        ),
        system_prompt=(
            "You are a Strategic Planning expert. Respond with the sections "
            "EXECUTIVE SUMMARY, KEY STRATEGIC INSIGHTS, COMPETITIVE ANALYSIS and "
            "STRATEGIC RECOMMENDATIONS, using bullet points.\n\n" + _FORMAT_FOOTER
        ),
    ),
    Agent(
        id="zbg",
        display_name="ZBG x Multiplier Effect",
        description=(
            "Senior Zero-Based Growth consultant specializing in business "
            "transformation, pricing strategy, and portfolio optimization"
        ),
        system_prompt=(
            "You are a Zero-Based Growth expert. Respond with the sections "
            "GROWTH ANALYSIS, FINANCIAL IMPACT, PRIORITY ACTIONS and MULTIPLIER "
            "EFFECT ANALYSIS, using bullet points.\n\n" + _FORMAT_FOOTER
        ),
    ),
    Agent(
        id="crm",
        display_name="CRM & Growth Loops",
        description=(
            "Senior CRM specialist in Growth Loops, RFM segmentation, viral "
            "coefficient optimization, and RevOps alignment"
        ),
        system_prompt=(
            "You are a CRM & Growth Loops expert. Respond with the sections "
            "CUSTOMER ANALYSIS, GROWTH LOOPS, CRM RECOMMENDATIONS and VIRAL GROWTH "
            "OPTIMIZATION, using bullet points.\n\n" + _FORMAT_FOOTER
        ),
    ),
    Agent(
        id="research",
        display_name="Research & Intelligence",
        description=(
            "Chief Insights Officer specializing in multi-source research, "
            "competitive intelligence, and C-suite decision support"
        ),
        system_prompt=(
            "You are a Research & Intelligence expert. Respond with the sections "
            "MARKET INSIGHTS, KEY FINDINGS, COMPETITIVE INTELLIGENCE and STRATEGIC "
            "RECOMMENDATIONS, using bullet points.\n\n" + _FORMAT_FOOTER
        ),
    ),
    Agent(
        id="brand-power",
        display_name="Brand Power",
        description=(
            "Senior Brand Equity consultant specializing in the Kantar DxMxS "
            "methodology, Price Power optimization, and price premium maximization"
        ),
        system_prompt=(
            "You are a Brand Power expert. Respond with the sections BRAND "
            "ASSESSMENT, BRAND METRICS, INVESTMENT PRIORITIES and PRICING "
            "OPTIMIZATION, using bullet points.\n\n" + _FORMAT_FOOTER
        ),
    ),
]

AGENTS_BY_ID: Dict[str, Agent] = {agent.id: agent for agent in AGENTS}


def get_agent_by_id(agent_id: str) -> Optional[Agent]:
    return AGENTS_BY_ID.get(agent_id)


def get_agents_by_ids(agent_ids: Iterable[str]) -> List[Agent]:
    """Resolve ids in order, silently skipping unknown ones."""
    return [AGENTS_BY_ID[i] for i in agent_ids if i in AGENTS_BY_ID]


def build_user_prompt(
    prompt: str,
    files: Sequence[FileSummary] = (),
    file_analysis: str = "",
    max_chars: int = 8000,
) -> str:
    """Append file context to the user's prompt and cap its length."""
    parts = [prompt]

    if file_analysis.strip():
        parts.append("\n\nFILE ANALYSIS CONTEXT:\n" + file_analysis)

    if files:
        parts.append("\n\nPROCESSED FILES DATA:\n")
        for index, file in enumerate(files, start=1):
            parts.append(f"\n{index}. {file.name}:\n")
            parts.append(f"   Summary: {file.summary}\n")
            if file.key_points:
                parts.append(f"   Key Points: {', '.join(file.key_points)}\n")
            if file.metrics:
                parts.append(f"   Metrics: {', '.join(file.metrics)}\n")

    return "".join(parts)[:max_chars]
