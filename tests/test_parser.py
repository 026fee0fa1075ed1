from healthmate.parser import PARSE_FAILED_PLACEHOLDER, parse_analysis_text

FULL_REPLY = """
**ANALYSIS**
1. **English Summary**
Your complete blood count is mostly normal.
Your vitamin D level is a little low.

2. **Roman Urdu Summary**
Aap ka blood count zyada tar theek hai.

3. **Key Findings**
- Hemoglobin 13.5 g/dL (normal)
• Platelets within range
This line has no marker and is ignored

4. **Abnormal Values**
* Vitamin D: 18 ng/mL (low)

5. **Recommendations**
1. Get 15 minutes of sunlight daily
2) Eat eggs and fish

6. **Questions for Doctor**
- Do I need supplements?
-
"""


def test_parses_all_sections():
    summary = parse_analysis_text(FULL_REPLY)

    assert summary.english == "Your complete blood count is mostly normal. Your vitamin D level is a little low."
    assert summary.secondary_language == "Aap ka blood count zyada tar theek hai."
    assert summary.key_findings == ["Hemoglobin 13.5 g/dL (normal)", "Platelets within range"]
    assert summary.abnormal_values == ["Vitamin D: 18 ng/mL (low)"]
    assert summary.recommendations == ["Get 15 minutes of sunlight daily", "Eat eggs and fish"]
    assert summary.doctor_questions == ["Do I need supplements?"]


def test_english_only_reply_leaves_other_sections_empty():
    summary = parse_analysis_text("English Summary\nAll values are normal.")

    assert summary.english == "All values are normal."
    assert summary.secondary_language == ""
    assert summary.key_findings == []
    assert summary.abnormal_values == []
    assert summary.recommendations == []
    assert summary.doctor_questions == []


def test_text_before_first_header_is_ignored():
    summary = parse_analysis_text("Hello there!\nSome preamble\nEnglish Summary\nBody text")

    assert summary.english == "Body text"


def test_header_matching_is_case_insensitive():
    summary = parse_analysis_text("KEY FINDINGS:\n- Cholesterol high")

    assert summary.key_findings == ["Cholesterol high"]


def test_bold_lines_are_skipped():
    summary = parse_analysis_text("English Summary\n**Note: bold line**\nPlain line")

    assert summary.english == "Plain line"


def test_only_one_marker_is_stripped():
    summary = parse_analysis_text("Recommendations\n- - double dashed\n- 5 mg daily")

    assert summary.recommendations == ["- double dashed", "5 mg daily"]


def test_italic_line_is_not_a_list_item():
    summary = parse_analysis_text("Key Findings\n*Note*: values taken while fasting\n* Glucose normal")

    assert summary.key_findings == ["Glucose normal"]


def test_repeated_header_reopens_section():
    text = "Key Findings\n- first\nRecommendations\n- rest more\nKey Findings\n- second"

    summary = parse_analysis_text(text)

    assert summary.key_findings == ["first", "second"]
    assert summary.recommendations == ["rest more"]


def test_custom_secondary_language_label():
    summary = parse_analysis_text("Spanish Summary\nTodo bien.", secondary_label="Spanish")

    assert summary.secondary_language == "Todo bien."


def test_windows_line_endings():
    summary = parse_analysis_text("English Summary\r\nLine one\r\nAbnormal Values\r\n- LDL high\r\n")

    assert summary.english == "Line one"
    assert summary.abnormal_values == ["LDL high"]


def test_none_input_falls_back_to_placeholder():
    summary = parse_analysis_text(None)

    assert summary.english == ""
    assert summary.secondary_language == PARSE_FAILED_PLACEHOLDER
    assert summary.key_findings == []


def test_non_string_input_is_returned_as_english():
    summary = parse_analysis_text(12345)

    assert summary.english == "12345"
    assert summary.secondary_language == PARSE_FAILED_PLACEHOLDER
