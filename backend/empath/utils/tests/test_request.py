import pytest

from empath.utils.exception import TransientServiceError
from empath.utils.request import Request, extract_json


def test_extract_json_variants():
    assert extract_json('{"a": 1}') == {"a": 1}
    assert extract_json('```json\n{"a": 2}\n```') == {"a": 2}
    assert extract_json('Sure! Here it is: {"a": {"b": 3}} hope that helps') == {"a": {"b": 3}}


@pytest.mark.parametrize("text", [None, "", "no json here", "[1, 2, 3]", "{broken"])
def test_extract_json_rejects(text):
    with pytest.raises(TransientServiceError):
        extract_json(text)


def test_chat_request_url():
    request = Request.chat("https://api.example.com/v1/", "model-x", "key")
    assert request.url == "https://api.example.com/v1/chat/completions"
    assert "model-x" in request.to_str()
