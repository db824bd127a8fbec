"""Tests for ReAct text parsing."""

from mcp_copilot.ai.react_format import claimed_actions, is_final_answer, parse_react_trace

TRACE = """**Reasoning:** The user wants the location of 1.2.3.4.
**Acting:** Call ip_lookup with ip=1.2.3.4.
**Observation:** The address is in Australia.
Reasoning: The owner is still unknown.
Acting: I will run whois next.
Response: 1.2.3.4 is an Australian address."""


def test_parse_iterations():
    trace = parse_react_trace(TRACE)

    assert [i.index for i in trace.iterations] == [1, 2]
    assert trace.iterations[0].acting == "Call ip_lookup with ip=1.2.3.4."
    assert trace.iterations[0].observation == "The address is in Australia."
    assert trace.iterations[1].observation == ""
    assert trace.response == "1.2.3.4 is an Australian address."


def test_headers_are_case_insensitive():
    trace = parse_react_trace("REASONING: think\nresponse: done")
    assert trace.iterations[0].reasoning == "think"
    assert trace.response == "done"


def test_plain_text_is_not_a_trace():
    assert parse_react_trace("Just an answer.") is None
    assert parse_react_trace("") is None


def test_final_answer():
    assert is_final_answer("Just an answer.")
    assert is_final_answer(TRACE)
    assert not is_final_answer("Reasoning: still thinking\nActing: whois")
    assert not is_final_answer("   ")


def test_claimed_actions():
    names = ["ip_lookup", "whois", "ip"]
    assert claimed_actions(TRACE, names) == ["ip_lookup", "whois"]


def test_claimed_actions_ignore_other_sections():
    text = "Reasoning: ip_lookup would help.\nResponse: no tools needed."
    assert claimed_actions(text, ["ip_lookup"]) == []
    assert claimed_actions("Plain text with whois in it.", ["whois"]) == []
