import json

from hypothesis import given, settings, strategies as st

from realty_report.services.repair import REQUIRED_SECTIONS, close_truncated, repair_model_output

FULL = {
    "financial_indicators": {
        "monthly_cash_flow": 158461,
        "gross_yield": 7.64,
        "net_yield": 6.65,
        "cap_rate": 6.65,
        "break_even": 2141539,
        "expected_appreciation": 4.0,
    },
    "location_analysis": {"summary": "Quiet street", "education": ["School"], "commerce": ["Mall"]},
    "security_analysis": {"security_index": 7.5, "summary": "Low crime"},
    "executive_summary": {
        "decision": "RECOMMENDED",
        "justification": "Positive cash flow",
        "risk_level": "low",
        "highlights": ["Good yield"],
        "final_recommendation": "Buy",
    },
}
FULL_TEXT = json.dumps(FULL, ensure_ascii=False)


def _assert_complete(result):
    for name in REQUIRED_SECTIONS:
        assert isinstance(result.analysis[name], dict)
    assert result.analysis["executive_summary"]["decision"]
    assert result.analysis["executive_summary"]["risk_level"]


def test_clean_reply_is_untouched():
    result = repair_model_output(FULL_TEXT)

    _assert_complete(result)
    assert result.skeleton_used is False
    assert result.completeness == 100
    assert result.issues == []
    assert result.quality_score == 100
    assert result.analysis["financial_indicators"]["net_yield"] == 6.65


def test_fenced_reply_with_prose():
    raw = "Here's the analysis you asked for:\n```json\n" + FULL_TEXT + "\n```\nLet me know!"
    result = repair_model_output(raw)

    assert result.skeleton_used is False
    assert result.completeness == 100
    assert result.analysis["executive_summary"]["decision"] == "RECOMMENDED"


def test_prose_around_unfenced_object():
    result = repair_model_output("Based on the data, " + FULL_TEXT + " Hope this helps.")
    assert result.completeness == 100


def test_trailing_commas_and_smart_quotes():
    raw = '{“financial_indicators”: {"gross_yield": 8,}, "executive_summary": {"decision": "conditional",},}'
    result = repair_model_output(raw)

    assert result.skeleton_used is False
    assert result.analysis["financial_indicators"]["gross_yield"] == 8
    assert result.analysis["executive_summary"]["decision"] == "CONDITIONAL"


def test_truncated_reply_is_closed():
    raw = FULL_TEXT[: FULL_TEXT.index('"location_analysis"') + 40]
    result = repair_model_output(raw)

    _assert_complete(result)
    assert result.skeleton_used is False
    assert "closed a truncated structure" in result.issues
    assert result.analysis["financial_indicators"]["monthly_cash_flow"] == 158461


def test_close_truncated_inside_string_and_array():
    assert json.loads(close_truncated('{"a": ["x", "y')) == {"a": ["x", "y"]}
    assert json.loads(close_truncated('{"a": 1, "b')) == {"a": 1}
    assert json.loads(close_truncated('{"a": {"b": 2,')) == {"a": {"b": 2}}


def test_garbage_uses_skeleton():
    result = repair_model_output("I'm sorry, I can't help with that.")

    _assert_complete(result)
    assert result.skeleton_used is True
    assert result.completeness == 0
    assert result.analysis["executive_summary"]["decision"] == "EVALUATE"


def test_missing_sections_are_backfilled_and_fields_inferred():
    raw = json.dumps({
        "financial_indicators": {"gross_yield": "8,0%"},
        "executive_summary": {"decision": "not recommended"},
    })
    result = repair_model_output(raw)

    _assert_complete(result)
    assert result.completeness == 50
    fi = result.analysis["financial_indicators"]
    assert fi["net_yield"] == 6.0
    assert fi["cap_rate"] == 6.0
    assert fi["expected_appreciation"] == 3.5
    assert result.analysis["executive_summary"]["decision"] == "NOT_RECOMMENDED"
    assert result.analysis["executive_summary"]["risk_level"] == "high"
    assert "missing section location_analysis" in result.issues
    assert "missing section security_analysis" in result.issues


def test_spanish_section_names_are_accepted():
    raw = json.dumps({
        "indicadoresFinancieros": {"gross_yield": 6},
        "analisisUbicacion": {"summary": "ok"},
        "analisisSeguridad": {"security_index": 5},
        "resumenEjecutivo": {"decision": "EVALUATE"},
    })
    result = repair_model_output(raw)
    assert result.completeness == 100


def test_non_object_json_is_not_accepted_as_analysis():
    result = repair_model_output("[1, 2, 3]")
    _assert_complete(result)
    assert result.skeleton_used is True


@settings(max_examples=60)
@given(cut=st.integers(min_value=0, max_value=len(FULL_TEXT)))
def test_any_truncation_yields_all_sections(cut):
    _assert_complete(repair_model_output(FULL_TEXT[:cut]))


@given(raw=st.text(max_size=300))
def test_arbitrary_text_never_raises(raw):
    _assert_complete(repair_model_output(raw))


def test_deeply_nested_reply_uses_skeleton():
    raw = '{"executive_summary": ' + "[" * 100_000 + "]" * 100_000 + "}"
    result = repair_model_output(raw)

    _assert_complete(result)
    assert result.skeleton_used is True


def test_number_past_int_digit_limit_uses_skeleton():
    raw = '{"financial_indicators": {"monthly_cash_flow": ' + "9" * 5_000 + "}}"
    result = repair_model_output(raw)

    _assert_complete(result)
    assert result.skeleton_used is True


def test_unknown_decision_becomes_evaluate():
    raw = json.dumps({**FULL, "executive_summary": {**FULL["executive_summary"], "decision": "BUY"}})
    result = repair_model_output(raw)

    assert result.analysis["executive_summary"]["decision"] == "EVALUATE"
    assert "unknown decision 'BUY' replaced with EVALUATE" in result.issues


def test_non_string_decision_becomes_evaluate():
    raw = json.dumps({"executive_summary": {"decision": {"value": "RECOMMENDED"}}})
    result = repair_model_output(raw)

    assert result.analysis["executive_summary"]["decision"] == "EVALUATE"
