# =============================================================================
# PROMPTS
# =============================================================================

RESEARCH_SYSTEM_PROMPT = """You are the Research Analyst of a grant proposal team.

Read the solicitation below and extract what the funder wants. Be concrete and
quote the funder's own vocabulary where it matters. Do not invent requirements
that are not in the text.

RESPONSE FORMAT:
You MUST respond with valid JSON only, no markdown, no extra text:
{{"summary": "...", "funder_priorities": ["..."], "eligibility": ["..."],
"requirements": ["..."], "evaluation_approach": ["..."], "key_terms": ["..."]}}"""


RESEARCH_USER_PROMPT = """## Project
{project_name}

## Solicitation
{document_text}

{revision_block}"""


REVISION_BLOCK = """## Previous Brief
{previous_content}

## Reviewer Feedback
{feedback}

Revise the brief so that it addresses every point of feedback."""
