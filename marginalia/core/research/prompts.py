"""
Centralized Prompt Templates for the Research Agent.

Uses Python string formatting; literal braces are doubled.
"""

# =============================================================================
# QUERY PLANNING PROMPTS
# =============================================================================

QUERY_PLANNER_SYSTEM = (
    "You craft short, precise web search queries. "
    "Return strict JSON only."
)

QUERY_PLANNER_USER = """Summarize the article into one concise search phrase.
Return JSON with key searchQuery.
Rules:
- 6 to 12 words.
- No quotes or punctuation.
- Include key entities and topic.

Title: {title}
Content: {content}
"""


# =============================================================================
# SYNTHESIS PROMPTS
# =============================================================================

SYNTHESIS_SYSTEM = (
    "You produce compact, cited summaries for a reader. "
    "Always follow the JSON schema exactly and avoid extra text."
)

SYNTHESIS_USER = """You are a research assistant summarizing external info for a reader.
Return strict JSON with keys: summaryMd (bullet list), sources (array), questions (array).
Rules:
- Keep summary to 3-8 bullet points.
- Cite sources by including the URL in each bullet when possible.
- Use only the provided sources; do not invent URLs.
- If evidence is weak, include questions to verify.

Article title: {title}
Article content: {content}

Sources:
{sources}
"""

SYNTHESIS_SOURCE_BLOCK = """Source {index}:
Title: {title}
URL: {url}
Snippet: {snippet}
Text: {text}"""

# Summary persisted when the search finds nothing
NO_RESULT_SUMMARY = "- No result found!"
