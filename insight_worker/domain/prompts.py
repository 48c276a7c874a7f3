"""Prompt builders for every inference call in the pipeline"""

import json
from typing import Any, List

from insight_worker.domain.models.capability import (
    Capability, ContextSnapshot, ExecutionResult,
    DATA_SUB_TYPES, ACTION_SUB_TYPES
)
from insight_worker.domain.models.analysis import AnalysisSections


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


def _format_examples(capability: Capability, limit: int, heading: str) -> str:
    if not capability.examples:
        return ""
    blocks = []
    for idx, exchange in enumerate(capability.examples[:limit]):
        lines = "\n".join(f'  {msg.speaker}: "{msg.text}"' for msg in exchange)
        blocks.append(f"Example {idx + 1}:\n{lines}")
    return f"\n## {heading}\n\n" + "\n\n".join(blocks)


def _format_similes(capability: Capability, label: str) -> str:
    if not capability.similes:
        return ""
    return f"\n**{label}:** {', '.join(capability.similes)}"


def _format_capability_list(capabilities: List[Capability]) -> str:
    entries = []
    for idx, capability in enumerate(capabilities):
        entry = f"### {idx + 1}. {capability.name}\n**Description:** {capability.description}"
        if capability.similes:
            entry += f"\n**Also known as:** {', '.join(capability.similes)}"
        if capability.examples:
            first = "\n".join(f'  {msg.speaker}: "{msg.text}"' for msg in capability.examples[0])
            entry += f"\n**Example usage:**\n{first}"
        entries.append(entry)
    return "\n\n".join(entries)


def _format_sections(analysis: AnalysisSections) -> str:
    return (
        f"**Overview:** {analysis.overview}\n\n"
        f"**Conditions:** {analysis.conditions}\n\n"
        f"**Risk Assessment:** {analysis.risk}\n\n"
        f"**Opportunities:** {analysis.opportunities}"
    )


def _format_context(context: List[ContextSnapshot]) -> str:
    if not context:
        return "No provider context available."
    return "\n\n".join(
        f"### {snapshot.provider_name}\n"
        f"**Collected at:** {snapshot.timestamp.isoformat()}\n"
        f"**Data:**\n{_dump(snapshot.data)}"
        for snapshot in context
    )


def capability_categorization_prompt(capability: Capability) -> str:
    data_types = "\n".join(f"- {t}" for t in DATA_SUB_TYPES)
    action_types = "\n".join(f"- {t}" for t in ACTION_SUB_TYPES)

    return f"""You are a capability classifier for an autonomous agent system.

Your task is to categorize a single capability into one of two main categories, and assign a specific sub-type.

## Main Categories

1. **DATA** - Read-only operations that gather information or analyze data
   - No state changes, no transactions, no mutations

2. **ACTION** - Write operations that modify state or execute transactions
   - State changes, transactions, external mutations

## DATA Sub-types
{data_types}

## ACTION Sub-types
{action_types}

## Capability to Classify

**Name:** {capability.name}

**Description:** {capability.description}
{_format_similes(capability, "Alternative names")}
{_format_examples(capability, 2, "Example Usage")}

## Classification Task

Determine whether the capability is DATA (read-only) or ACTION (write operation), which sub-type
best describes it, and how confident you are (0.0 to 1.0). Judge the capability's actual behavior,
not just its name."""


def select_relevant_data_prompt(
    sub_type: str,
    capabilities: List[Capability],
    context: List[ContextSnapshot],
) -> str:
    return f"""You are an autonomous agent deciding which data collection capabilities are relevant given the available context.

## Provider Context

{_format_context(context)}

## Available {sub_type} Capabilities

{_format_capability_list(capabilities)}

## Selection Criteria

Select a capability if:
- The context indicates data this capability can enrich or complement
- It provides information missing from the context
- It helps validate or cross-reference the context

Do NOT select capabilities that:
- Request data already fully available in the context
- Do not apply to the current state

Return the names of the relevant capabilities, or an empty list with your reasoning."""


def data_trigger_prompt(capability: Capability) -> str:
    return f"""Generate a trigger message for a data collection capability.

## Capability Details

**Name:** {capability.name}

**Description:** {capability.description}
{_format_similes(capability, "Alternative names")}
{_format_examples(capability, 3, "Example Messages")}

## Task

Write one short message that will trigger this capability.
- Match the example message patterns above
- Keep it natural and concise
- This is for automated data collection, not user-facing

Return ONLY the trigger message as plain text, nothing else."""


def insight_prompt(
    results: List[ExecutionResult],
    context: List[ContextSnapshot],
    capabilities_used: List[str],
) -> str:
    result_blocks = []
    for idx, result in enumerate(results):
        status = "Success" if result.success else "Failed"
        body = f"**Data:**\n{_dump(result.data)}" if result.success else f"**Error:** {result.error}"
        result_blocks.append(f"### {idx + 1}. {result.capability_name}\n**Status:** {status}\n{body}")
    results_text = "\n\n".join(result_blocks) or "No capabilities were executed."

    return f"""You are an analyst producing a situation report for an autonomous agent.

## Data from Capabilities

{results_text}

## Context from Providers

{_format_context(context)}

## Sources Used

{', '.join(capabilities_used) or 'none'}

## Your Task

Write four sections (overview, conditions, risk, opportunities). Each section should:
- Reference specific data points and cite the source that provided them
- Use concrete numbers and percentages from the data
- Stay concise (2-4 sentences)
- Acknowledge missing or failed data plainly"""


def select_relevant_actions_prompt(
    sub_type: str,
    capabilities: List[Capability],
    analysis: AnalysisSections,
) -> str:
    return f"""You are an autonomous agent deciding which {sub_type} capabilities are worth recommending.

## Analysis Summary

{_format_sections(analysis)}

## Available {sub_type} Capabilities

{_format_capability_list(capabilities)}

## Selection Criteria

Select a capability if it addresses an opportunity from the analysis, mitigates an identified
risk, or fits the current conditions and state.

Do NOT select capabilities that are unsupported by the analysis, add risk without clear
benefit, or are redundant.

Return the names of the relevant capabilities, or an empty list with your reasoning."""


def recommendation_prompt(
    capability: Capability,
    analysis: AnalysisSections,
) -> str:
    return f"""You are generating a specific recommendation based on analysis results.

## Analysis Context

{_format_sections(analysis)}

## Capability to Recommend

**Name:** {capability.name}

**Owner:** {capability.owner_name}

**Description:** {capability.description}
{_format_similes(capability, "Alternative names")}
{_format_examples(capability, 3, "Example Messages That Trigger This Capability")}

## Requirements

1. priority: "high", "medium" or "low" by urgency and impact
2. reasoning: why this is recommended (2-3 sentences), citing the analysis
3. confidence: 0.0 to 1.0
4. trigger_phrase: must closely follow the example messages above, replacing only concrete
   values (amounts, assets) with data from the analysis. It is sent verbatim.
5. params: relevant key/value pairs (assets, amounts, addresses)
6. estimated_impact: expected outcome in one sentence
7. estimated_gas: rough estimate, or "Not applicable" when there is no cost

Return every field."""
