from crm_sync.services.crm.transcript_formatter import (
    extract_seconds,
    format_for_prompt,
    seconds_to_timestamp,
)


def test_format_segments_with_timestamps():
    transcript = [
        {"speaker": "John", "words": [{"text": "Hello", "start_timestamp": 5.0}, {"text": "there"}]},
        {"speaker": "Sarah", "words": [{"text": "Hi", "start_timestamp": 125.9}]},
    ]

    assert format_for_prompt(transcript) == "[00:05] John: Hello there\n[02:05] Sarah: Hi"


def test_format_accepts_data_wrapper():
    transcript = {"data": [{"speaker": "John", "words": [{"text": "Hi", "relative": 61}]}]}
    assert format_for_prompt(transcript) == "[01:01] John: Hi"


def test_missing_speaker_and_words():
    assert format_for_prompt([{"words": []}]) == "[00:00] Unknown Speaker: "


def test_empty_or_invalid_transcript():
    assert format_for_prompt(None) == ""
    assert format_for_prompt([]) == ""
    assert format_for_prompt("not a transcript") == ""


def test_extract_seconds_variants():
    assert extract_seconds({"relative": 3, "start_timestamp": 9}) == 3
    assert extract_seconds({"start_timestamp": 9}) == 9
    assert extract_seconds(12) == 12
    assert extract_seconds(True) == 0
    assert extract_seconds({"text": "x"}) == 0


def test_seconds_to_timestamp():
    assert seconds_to_timestamp(0) == "00:00"
    assert seconds_to_timestamp(3599) == "59:59"
