import pytest

from fakes import FakeAPIError, FakeClient
from models import CycleContext
from summarizer import DEFAULT_PROMPTS, Summarizer, load_prompts


def make_summarizer(client, enabled=True, api_key="sk-test-key-123456"):
    return Summarizer(
        enabled=enabled,
        api_key=api_key,
        model="test-model",
        max_input_chars=1000,
        timeout=2,
        prompts=dict(DEFAULT_PROMPTS),
        client=client,
    )


@pytest.mark.asyncio
async def test_summary_is_trimmed_and_counted():
    client = FakeClient("```markdown\n- Point one\n- Point two\n```")
    summarizer = make_summarizer(client)
    context = CycleContext()

    summary = await summarizer.summarize("Title", "https://example.com/a", "Body text", context)

    assert summary == "- Point one\n- Point two"
    assert context.ai_calls == 1
    assert context.ai_summaries == 1
    messages = client.calls[0]["messages"]
    assert messages[0]["content"] == DEFAULT_PROMPTS["summarize"]
    assert "Title: Title\nURL: https://example.com/a" in messages[1]["content"]


@pytest.mark.asyncio
@pytest.mark.parametrize("enabled,api_key", [(False, "sk-test-key-123456"), (True, ""), (True, "   ")])
async def test_inactive_summarizer_makes_no_calls(enabled, api_key):
    client = FakeClient("unused")
    summarizer = Summarizer(enabled=enabled, api_key=api_key,
                            prompts=dict(DEFAULT_PROMPTS), client=client)
    context = CycleContext()

    assert await summarizer.summarize("Title", "https://example.com/a", "Body", context) == ""
    assert client.calls == []
    assert context.ai_calls == 0
    assert not summarizer.active


@pytest.mark.asyncio
async def test_quota_exhaustion_trips_breaker_for_rest_of_cycle():
    client = FakeClient(FakeAPIError("insufficient_quota", "You exceeded your current quota"))
    summarizer = make_summarizer(client)
    context = CycleContext()

    first = await summarizer.summarize("One", "https://example.com/1", "Body", context)
    second = await summarizer.summarize("Two", "https://example.com/2", "Body", context)

    assert first == second == ""
    assert context.summaries_disabled
    assert "quota" in context.disabled_reason
    assert len(client.calls) == 1
    assert context.ai_calls == 1


@pytest.mark.asyncio
async def test_breaker_does_not_carry_into_next_cycle():
    client = FakeClient(FakeAPIError("insufficient_quota", "quota exceeded"), "- Fresh summary")
    summarizer = make_summarizer(client)

    first_cycle = CycleContext()
    assert await summarizer.summarize("One", "https://example.com/1", "Body", first_cycle) == ""
    assert first_cycle.summaries_disabled

    second_cycle = CycleContext()
    assert await summarizer.summarize("One", "https://example.com/1", "Body", second_cycle) == "- Fresh summary"
    assert not second_cycle.summaries_disabled


@pytest.mark.asyncio
async def test_content_filter_only_affects_that_item():
    client = FakeClient(FakeAPIError("content_filter", "Content filtered"), "- Fine")
    summarizer = make_summarizer(client)
    context = CycleContext()

    assert await summarizer.summarize("One", "https://example.com/1", "Body", context) == ""
    assert await summarizer.summarize("Two", "https://example.com/2", "Body", context) == "- Fine"
    assert not context.summaries_disabled


def test_input_text_is_bounded():
    summarizer = make_summarizer(FakeClient("unused"))
    messages = summarizer.build_messages("T", "https://site.org/a", "x" * 5000)
    assert messages[1]["content"].count("x") == 1000


def test_load_prompts_overrides_per_key(tmp_path):
    prompt_file = tmp_path / "prompt.yaml"
    prompt_file.write_text("summarize: Custom summary prompt\n", encoding="utf-8")

    prompts = load_prompts(str(prompt_file))

    assert prompts["summarize"] == "Custom summary prompt"
    assert prompts["chat"] == DEFAULT_PROMPTS["chat"]


def test_load_prompts_missing_file_uses_defaults(tmp_path):
    assert load_prompts(str(tmp_path / "missing.yaml")) == DEFAULT_PROMPTS
