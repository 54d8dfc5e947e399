"""Agent execution engine: conversation, tool loop, step budget, output retries."""
import pytest

from gentlang.ai_providers import MockProvider, ProviderResponse, ToolCall
from gentlang.errors import (
    ConfigError, OutputValidationFailed, ProviderError, StepLimitExceeded,
    ToolArgumentError, UnknownToolError,
)
from gentlang.runtime import Runtime


def call(name, **arguments):
    return ProviderResponse(tool_calls=[ToolCall(id=f"call_{name}", name=name, arguments=arguments)])


class TestConversation:
    """What the engine sends to the provider."""

    def test_default_user_prompt(self, run_program):
        provider = MockProvider(response="hi there")
        rt = run_program("""
        agent Greeter { systemPrompt: "Be nice." }
        println(Greeter.run())
        """, provider)
        assert rt.console == ["hi there"]
        sent = provider.calls[0]
        assert sent["system"] == "Be nice."
        assert sent["messages"][0].content == "Hello!"
        assert sent["json_mode"] is False

    def test_user_prompt_override_and_model(self, run_program):
        provider = MockProvider()
        run_program("""
        agent A { systemPrompt: "s" model: "gpt-4o" }
        A.userPrompt("first").run()
        A.run("second")
        """, provider)
        assert [c["messages"][0].content for c in provider.calls] == ["first", "second"]
        assert provider.calls[0]["model"] == "gpt-4o"

    def test_handles_are_immutable(self, run_program):
        provider = MockProvider()
        run_program("""
        agent A { systemPrompt: "original" }
        let B = A.systemPrompt("changed")
        A.run()
        B.run()
        """, provider)
        assert [c["system"] for c in provider.calls] == ["original", "changed"]

    def test_default_mock_response(self, run_program):
        rt = run_program('agent A { systemPrompt: "s" }\nprintln(A.run())')
        assert rt.console == ["Hello! I'm a friendly assistant. How can I help you today?"]


class TestToolLoop:

    def test_tool_result_is_fed_back(self, run_program):
        provider = MockProvider(script=[call("double", n=21), "The answer is 42"])
        rt = run_program("""
        tool double(n: number) -> number { return n * 2 }
        agent Calc { systemPrompt: "math" tools: [double] }
        println(Calc.run("double 21"))
        """, provider)
        assert rt.console == ["The answer is 42"]
        assert provider.calls[0]["tools"] == ["double"]
        second = provider.calls[1]["messages"]
        assert [m.role for m in second] == ["user", "assistant", "tool"]
        assert second[2].content == "42"
        assert second[2].tool_call_id == "call_double"

    def test_builtin_tool(self, run_program, tmp_path):
        target = tmp_path / "note.txt"
        target.write_text("secret", encoding="utf-8")
        provider = MockProvider(script=[call("read_file", path=str(target)), "done"])
        run_program("""
        agent Reader { systemPrompt: "read" tools: [read_file] }
        Reader.run()
        """, provider)
        assert provider.calls[1]["messages"][2].content == "secret"

    def test_error_inside_tool_is_reported_to_model(self, run_program):
        provider = MockProvider(script=[call("fail"), "recovered"])
        rt = run_program("""
        tool fail() { return [1][3] }
        agent A { systemPrompt: "s" tools: [fail] }
        println(A.run())
        """, provider)
        assert rt.console == ["recovered"]
        assert provider.calls[1]["messages"][2].content.startswith("Error: Index 3 out of bounds")

    def test_unknown_tool_call(self, run_program):
        provider = MockProvider(script=[call("nope")])
        with pytest.raises(UnknownToolError, match="Unknown tool 'nope'"):
            run_program('agent A { systemPrompt: "s" }\nA.run()', provider)

    def test_agent_listing_missing_tool(self, run_program):
        with pytest.raises(UnknownToolError) as exc:
            run_program('agent A { systemPrompt: "s" tools: [ghost] }\nA.run()')
        assert exc.value.agent == "A"
        assert exc.value.tool == "ghost"

    def test_bad_tool_arguments(self, run_program):
        provider = MockProvider(script=[call("double", n="21")])
        with pytest.raises(ToolArgumentError, match="argument 'n'"):
            run_program("""
            tool double(n: number) { return n * 2 }
            agent A { systemPrompt: "s" tools: [double] }
            A.run()
            """, provider)

    def test_step_limit(self, run_program):
        provider = MockProvider(script=[call("read_file", path="x")] * 5)
        with pytest.raises(StepLimitExceeded, match="within 2 steps"):
            run_program('agent A { systemPrompt: "s" tools: [read_file] maxSteps: 2 }\nA.run()', provider)
        assert len(provider.calls) == 2


class TestStructuredOutput:
    """Output schemas: validation, retry and coercion."""

    SRC = """
    struct Verdict { ok: boolean, reason: string }
    agent Judge { systemPrompt: "judge" output: Verdict %s }
    let v = Judge.run("check")
    println(v.ok, v.reason, typeOf(v))
    """

    def test_valid_output_is_a_struct(self, run_program):
        provider = MockProvider(script=['{"ok": true, "reason": "fine"}'])
        rt = run_program(self.SRC % "", provider)
        assert rt.console == ["true fine Verdict"]
        assert provider.calls[0]["json_mode"] is True
        assert "JSON Schema" in provider.calls[0]["system"]

    def test_retry_succeeds_on_second_reply(self, run_program):
        provider = MockProvider(script=['{"ok": "yes"}', '{"ok": false, "reason": "nope"}'])
        rt = run_program(self.SRC % "", provider)
        assert rt.console == ["false nope Verdict"]
        retry = provider.calls[1]["messages"][-1]
        assert retry.role == "user"
        assert "did not match the required output schema" in retry.content

    def test_custom_retry_prompt(self, run_program):
        provider = MockProvider(script=["nope", '{"ok": true, "reason": "r"}'])
        run_program(self.SRC % 'retryPrompt: "Fix it: {error}"', provider)
        assert provider.calls[1]["messages"][-1].content.startswith("Fix it: response is not valid JSON")

    def test_retries_exhausted(self, run_program):
        provider = MockProvider(script=["bad"] * 5)
        with pytest.raises(OutputValidationFailed) as exc:
            run_program(self.SRC % "outputRetries: 2", provider)
        assert exc.value.attempts == 3
        assert len(provider.calls) == 3
        assert "not valid JSON" in exc.value.last_error

    def test_zero_retries(self, run_program):
        provider = MockProvider(script=["bad"])
        with pytest.raises(OutputValidationFailed) as exc:
            run_program(self.SRC % "outputRetries: 0", provider)
        assert exc.value.attempts == 1

    def test_failure_is_catchable(self, run_program):
        provider = MockProvider(script=["bad", "bad"])
        rt = run_program("""
        struct Verdict { ok: boolean }
        agent Judge { systemPrompt: "judge" output: Verdict }
        try { Judge.run() } catch e { println(e.kind, e.agent, e.attempts) }
        """, provider)
        assert rt.console == ["OutputValidationFailed Judge 2"]

    def test_mock_synthesises_schema_sample(self, run_program):
        rt = run_program("""
        agent Scorer { systemPrompt: "score" output: { score: number, tags: string[] } }
        let r = Scorer.run()
        println(r.score, r.tags)
        """)
        assert rt.console == ['1 ["sample"]']


class TestProviderErrors:

    def test_provider_error_propagates_with_agent(self, run_program):
        provider = MockProvider(script=[ProviderError(ProviderError.RATE_LIMITED, "slow down")])
        rt = run_program("""
        agent A { systemPrompt: "s" }
        try { A.run() } catch e { println(e.kind, e.errorKind, e.agent) }
        """, provider)
        assert rt.console == ["ProviderError RateLimited A"]

    def test_timeout_ceiling(self, config):
        rt = Runtime(config=config.model_copy(update={"provider_timeout": 0.05}),
                     provider=MockProvider(delay=1.0), echo=False)
        rt.load('agent A { systemPrompt: "s" }\nA.run()')
        with pytest.raises(ProviderError) as exc:
            rt.run()
        assert exc.value.error_kind == ProviderError.TIMEOUT

    def test_invalid_provider_name(self, run_program):
        with pytest.raises(ConfigError, match="Unknown provider 'gemini'. Supported: openai, anthropic, claude-code, mock"):
            run_program('agent A { systemPrompt: "s" provider: "gemini" }')
