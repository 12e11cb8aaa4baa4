from __future__ import annotations

import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ai.response_parsing import clean_json_text, extract_json_object, strip_trailing_commas  # noqa: E402
from services.errors import InferenceMalformedError  # noqa: E402


def test_code_fences_and_surrounding_prose_are_removed():
    text = 'Here is the plan:\n```json\n{"adjustmentRequired": true, "reason": "slow"}\n```\nGood luck!'
    assert clean_json_text(text) == '{"adjustmentRequired": true, "reason": "slow"}'
    assert extract_json_object(text) == {"adjustmentRequired": True, "reason": "slow"}


def test_trailing_commas_are_repaired_on_second_attempt():
    text = '{"newMacroSplit": {"protein": 30, "carbs": 40, "fat": 30,}, "reason": "x",}'
    assert extract_json_object(text)["newMacroSplit"] == {"protein": 30, "carbs": 40, "fat": 30}


def test_strip_trailing_commas_handles_arrays():
    assert strip_trailing_commas('[1, 2, ]') == '[1, 2]'


@pytest.mark.parametrize(
    "text",
    [
        "",
        "No adjustments today.",
        '{"adjustmentRequired": true, "reason": }',
        "} backwards {",
    ],
)
def test_unparseable_responses_raise_malformed(text):
    with pytest.raises(InferenceMalformedError):
        extract_json_object(text)
