"""Tests for the tool-result sufficiency heuristic."""

from mcp_copilot.ai.policies import never_sufficient, results_look_sufficient
from mcp_copilot.ai.tools.base import ToolCallRequest, ToolOutcome

CALL = ToolCallRequest("call_1", "whois", "{}")


def ok(result):
    return ToolOutcome(call=CALL, result=result)


def failed():
    return ToolOutcome(call=CALL, error="timeout", error_type="ToolTransportError")


LONG_QUERY = "Give me a complete report about this address and everything related to it"


def test_no_results():
    assert not results_look_sufficient([], "where is 1.2.3.4?")


def test_short_query_with_data():
    assert results_look_sufficient([ok({"country": "Australia"})], "where is 1.2.3.4?")


def test_empty_looking_results_are_not_data():
    assert not results_look_sufficient([ok({})], "where is 1.2.3.4?")
    assert not results_look_sufficient([ok("not found")], "where is 1.2.3.4?")
    assert not results_look_sufficient([failed()], "where is 1.2.3.4?")


def test_long_query_needs_two_successful_results():
    first = ok({"country": "Australia"})
    assert not results_look_sufficient([first], LONG_QUERY)
    assert results_look_sufficient([first, ok({"asn": 13335})], LONG_QUERY)


def test_owner_query():
    query = "who is the owner of example.com? " + LONG_QUERY
    assert results_look_sufficient([ok({"organization": "IANA"})], query)
    assert not results_look_sufficient([ok({"registrar": "none"})], query)


def test_never_sufficient():
    assert not never_sufficient([ok({"country": "Australia"})], "where?")
