"""
Query planner, summary synthesizer and mode tests.
"""

import pytest

from conftest import FakeLLM
from marginalia.core.research.models import ResearchSource
from marginalia.core.research.modes import ResearchMode, get_mode_limits, resolve_mode
from marginalia.core.research.parsing import extract_json_object
from marginalia.core.research.planner import QueryPlanner
from marginalia.core.research.synthesizer import SummarySynthesizer, add_inline_citations
from marginalia.utils.exceptions import LLMError, SynthesisParseError


SOURCES = [
    ResearchSource(title="A", url="https://a.example.com"),
    ResearchSource(title="B", url="https://b.example.com"),
]


class TestJsonExtraction:
    """Pulling JSON out of model replies."""

    def test_plain_object(self):
        assert extract_json_object('{"searchQuery": "x"}') == {"searchQuery": "x"}

    def test_object_in_prose_and_fences(self):
        reply = 'Sure! Here you go:\n```json\n{"searchQuery": "tidal power nz"}\n```\nHope it helps {'
        assert extract_json_object(reply) == {"searchQuery": "tidal power nz"}

    def test_skips_non_object_braces(self):
        assert extract_json_object('{oops} then {"a": 1}') == {"a": 1}

    @pytest.mark.parametrize("reply", ["", None, "no json here", "[1, 2, 3]"])
    def test_missing(self, reply):
        with pytest.raises(ValueError):
            extract_json_object(reply)


class TestQueryPlanner:
    """Search query planning."""

    @pytest.mark.asyncio
    async def test_uses_model_query(self, article):
        llm = FakeLLM('Answer: {"searchQuery": "  tidal   turbines Cook Strait  "}')
        planner = QueryPlanner(llm)

        query = await planner.plan_query(article.title, article.content_html)

        assert query == "tidal turbines Cook Strait"
        assert "Tidal energy in the Cook Strait" in llm.prompts[0]

    @pytest.mark.asyncio
    async def test_fallback_when_model_fails(self, article):
        planner = QueryPlanner(FakeLLM(LLMError("down")))
        query = await planner.plan_query(article.title, article.content_html)
        assert query == (
            "Tidal energy in the Cook Strait Engineers are testing tidal turbines near Wellington."
        )

    @pytest.mark.asyncio
    async def test_fallback_on_garbage(self, article):
        planner = QueryPlanner(FakeLLM("I cannot help with that."))
        query = await planner.plan_query(article.title, article.content_html)
        assert query.startswith("Tidal energy in the Cook Strait Engineers")

    @pytest.mark.asyncio
    async def test_fallback_on_empty_query(self, article):
        planner = QueryPlanner(FakeLLM('{"searchQuery": "   "}'))
        query = await planner.plan_query(article.title, article.content_html)
        assert query.startswith("Tidal energy")

    @pytest.mark.asyncio
    async def test_fallback_truncates_body(self):
        planner = QueryPlanner(FakeLLM(ValueError("nope")), fallback_words=3)
        body = "<p>" + " ".join(f"w{i}" for i in range(100)) + "</p>"
        assert await planner.plan_query("Title", body) == "Title w0 w1 w2"

    @pytest.mark.asyncio
    async def test_missing_title_and_body(self):
        planner = QueryPlanner(FakeLLM(ValueError("nope")))
        assert await planner.plan_query(None, None) == ""


class TestInlineCitations:
    """Every bullet ends up citing a source."""

    def test_uncited_bullets_cycle_sources(self):
        summary = "- first point\n- second point\n\n- third point"
        assert add_inline_citations(summary, SOURCES) == (
            "- first point (https://a.example.com)\n"
            "- second point (https://b.example.com)\n"
            "- third point (https://a.example.com)"
        )

    def test_cited_bullets_untouched(self):
        summary = "- already cited https://c.example.com/x\n- needs one"
        assert add_inline_citations(summary, SOURCES) == (
            "- already cited https://c.example.com/x\n"
            "- needs one (https://a.example.com)"
        )

    def test_plain_lines_become_bullets(self):
        assert add_inline_citations("just text", SOURCES[1:]) == (
            "- just text (https://b.example.com)"
        )

    def test_no_sources_leaves_summary(self):
        assert add_inline_citations("- point", []) == "- point"


class TestSummarySynthesizer:
    """Synthesis prompt and reply handling."""

    @pytest.mark.asyncio
    async def test_synthesize(self, article):
        reply = (
            '{"summaryMd": "- Turbines work\\n- Costs fall https://b.example.com",'
            ' "sources": [{"title": "A", "url": "https://a.example.com", "publishedAt": "2024"},'
            ' {"title": "no url", "url": ""}],'
            ' "questions": ["How big?", "  ", 42]}'
        )
        llm = FakeLLM(reply)
        synthesizer = SummarySynthesizer(llm)

        result = await synthesizer.synthesize(article, SOURCES, ["page text a", "page text b"])

        assert result.summary_md == (
            "- Turbines work (https://a.example.com)\n- Costs fall https://b.example.com"
        )
        assert [s.url for s in result.sources] == ["https://a.example.com"]
        assert result.sources[0].published_at == "2024"
        assert result.questions == ["How big?", "42"]
        assert "page text b" in llm.prompts[0]
        assert "Source 2:\nTitle: B" in llm.prompts[0]

    @pytest.mark.asyncio
    async def test_falls_back_to_input_sources(self, article):
        synthesizer = SummarySynthesizer(FakeLLM('{"summaryMd": "- one", "sources": []}'))
        result = await synthesizer.synthesize(article, SOURCES, ["", ""])

        assert [s.url for s in result.sources] == ["https://a.example.com", "https://b.example.com"]
        assert result.summary_md == "- one (https://a.example.com)"
        assert result.questions == []

    @pytest.mark.asyncio
    async def test_null_fields_are_empty(self, article):
        reply = '{"summaryMd": "- A point", "sources": null, "questions": null}'
        synthesizer = SummarySynthesizer(FakeLLM(reply))
        result = await synthesizer.synthesize(article, SOURCES, ["", ""])

        assert result.summary_md == "- A point (https://a.example.com)"
        assert [s.url for s in result.sources] == ["https://a.example.com", "https://b.example.com"]
        assert result.questions == []

    def test_null_summary_is_empty(self):
        output = SummarySynthesizer(FakeLLM("{}")).parse('{"summaryMd": null}')
        assert output.summary_md == ""
        assert output.sources == []

    @pytest.mark.asyncio
    async def test_unparseable_reply(self, article):
        synthesizer = SummarySynthesizer(FakeLLM("Sorry, no summary today."))
        with pytest.raises(SynthesisParseError) as exc:
            await synthesizer.synthesize(article, SOURCES, ["", ""])
        assert exc.value.message == "LLM output missing JSON"

    def test_schema_mismatch(self):
        synthesizer = SummarySynthesizer(FakeLLM("{}"))
        with pytest.raises(SynthesisParseError):
            synthesizer.parse('{"summaryMd": "x", "sources": "not a list"}')

    def test_source_text_is_truncated(self, article):
        synthesizer = SummarySynthesizer(FakeLLM("{}"), source_chars=10)
        prompt = synthesizer.build_prompt(article, SOURCES[:1], ["0123456789ABCDEF"])
        assert "0123456789" in prompt
        assert "ABCDEF" not in prompt


class TestModes:
    """Mode resolution."""

    @pytest.mark.parametrize("raw,expected", [
        ("quick", ResearchMode.QUICK),
        (" DEEP ", ResearchMode.DEEP),
        ("standard", ResearchMode.STANDARD),
        ("turbo", ResearchMode.STANDARD),
        (None, ResearchMode.STANDARD),
        (ResearchMode.QUICK, ResearchMode.QUICK),
    ])
    def test_resolve(self, raw, expected):
        assert resolve_mode(raw) is expected

    def test_limits(self):
        quick = get_mode_limits("quick")
        deep = get_mode_limits("deep")
        assert (quick.search_results, quick.fetch_pages, quick.timeout, quick.ttl_hours) == (5, 3, 20.0, 12)
        assert (deep.search_results, deep.fetch_pages, deep.timeout, deep.ttl_hours) == (8, 5, 40.0, 168)
        assert get_mode_limits(None) == get_mode_limits("standard")
