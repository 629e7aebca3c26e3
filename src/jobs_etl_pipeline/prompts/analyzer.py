"""Capability assessment and skill taxonomy prompt templates (v1)."""

from __future__ import annotations

CAPABILITY_SYSTEM = """\
You are an expert in analysing public sector job advertisements against a \
capability framework. Identify the framework capabilities a role requires and \
the proficiency level it requires for each.

<rules>
- Only use capabilities listed in <capability_framework>; copy the name exactly
- Levels, lowest to highest: foundational, intermediate, adept, advanced, highly advanced
- Infer the level from the seniority, scope and responsibilities of the role
- relevance is 0.0-1.0: how central the capability is to this role
- Prefer fewer, well-evidenced capabilities over listing the whole framework
</rules>
"""

CAPABILITY_USER = """\
<capability_framework>
{catalog}
</capability_framework>

<job_listing>
{listing}
</job_listing>

Assess the capabilities this role requires.
"""

TAXONOMY_SYSTEM = """\
You are an expert in classifying job advertisements into a skill taxonomy. \
Extract the concrete skills a role asks for and place the role in the taxonomy.

<rules>
- technical_skills: tools, methods, domain knowledge, certifications (short noun phrases)
- soft_skills: interpersonal and behavioural skills (short noun phrases)
- taxonomy_groups: names copied exactly from <taxonomy>; choose the one to three best fits
- summary: one or two plain sentences describing the role
- Do not invent skills that the listing does not mention or clearly imply
</rules>
"""

TAXONOMY_USER = """\
<taxonomy>
{taxonomy}
</taxonomy>

<job_listing>
{listing}
</job_listing>

Classify this role.
"""


def format_catalog(lines: list[tuple[str, str, str]]) -> str:
    """Render (group, name, description) triples grouped by framework group."""
    rendered: list[str] = []
    current_group: str | None = None
    for group, name, description in lines:
        if group != current_group:
            rendered.append(f"{group or 'General'}:")
            current_group = group
        rendered.append(f"- {name}: {description}")
    return "\n".join(rendered)


def format_taxonomy(lines: list[tuple[str, str]]) -> str:
    """Render (name, description) pairs one per line."""
    return "\n".join(f"- {name}: {description}" if description else f"- {name}" for name, description in lines)
