"""Tests for image extraction and config coercion helpers."""
import pytest

from conftest import PNG_BASE64
from selfie_generator.exceptions import PROVIDER_CONFIG_INVALID, ProviderError
from selfie_generator.extraction import (
    build_request_url,
    collect_image_candidates,
    dedupe_non_empty_strings,
    detect_image_mime,
    extract_image_url,
    get_by_path,
    merged_extra_body,
    pick_chat_image_candidate,
    pick_image_candidate,
    pick_plain_image,
    pick_plain_or_base64,
    resolve_image_url,
    to_optional_string,
)


class TestGetByPath:
    """Dotted path lookup never raises."""

    def test_reads_nested_dict_and_list(self) -> None:
        source = {"data": [{"url": "https://x/1.png"}]}
        assert get_by_path(source, "data.0.url") == "https://x/1.png"

    def test_missing_segments_return_default(self) -> None:
        source = {"data": [{"url": "https://x/1.png"}]}
        assert get_by_path(source, "data.3.url") is None
        assert get_by_path(source, "data.url") is None
        assert get_by_path(source, "nope.0", default="d") == "d"
        assert get_by_path("text", "a") is None
        assert get_by_path(source, "") is None


class TestCoercion:
    def test_to_optional_string(self) -> None:
        assert to_optional_string("abc") == "abc"
        assert to_optional_string(12) == "12"
        assert to_optional_string(12.0) == "12"
        assert to_optional_string(1.5) == "1.5"
        assert to_optional_string(True) is None
        assert to_optional_string(float("nan")) is None
        assert to_optional_string(None) is None

    def test_dedupe_trims_and_keeps_order(self) -> None:
        assert dedupe_non_empty_strings([" a ", "b", "a", "", None, "b"]) == ["a", "b"]

    def test_merged_extra_body_prefers_camel_case(self) -> None:
        config = {"extra_body": {"a": 1, "b": 1}, "extraBody": {"b": 2}}
        assert merged_extra_body(config) == {"a": 1, "b": 2}


class TestPickers:
    """String pickers recognise URLs, data URLs and raw base64."""

    def test_plain_picker_accepts_urls_only(self) -> None:
        assert pick_plain_image(" https://cdn.example.com/a.png ") == "https://cdn.example.com/a.png"
        assert pick_plain_image("data:image/png;base64,AAAA") == "data:image/png;base64,AAAA"
        assert pick_plain_image(PNG_BASE64) is None

    def test_raw_base64_of_128_chars_is_promoted(self) -> None:
        assert pick_plain_or_base64(PNG_BASE64) == f"data:image/png;base64,{PNG_BASE64}"
        assert pick_image_candidate(PNG_BASE64) == f"data:image/png;base64,{PNG_BASE64}"

    @pytest.mark.parametrize(
        "value",
        [
            "iVBORw0KGgo" + "A" * 49,       # 60 chars, too short
            "iVBORw0KGgo" + "A" * 118,      # 129 chars, not a multiple of 4
            "iVBORw0KGgo" + "A" * 116 + "!",  # invalid alphabet
            "hello world",
        ],
    )
    def test_strict_picker_rejects_non_image_text(self, value: str) -> None:
        assert pick_plain_or_base64(value) is None

    def test_mime_detection_by_magic_prefix(self) -> None:
        assert detect_image_mime("/9j/4AAQ") == "image/jpeg"
        assert detect_image_mime("R0lGODlh") == "image/gif"
        assert detect_image_mime("UklGRiQ") == "image/webp"
        assert detect_image_mime("AAAA") == "image/png"

    def test_markdown_wrapped_url(self) -> None:
        text = "Here you go ![selfie](https://cdn.example.com/selfie.png) enjoy."
        assert pick_image_candidate(text) == "https://cdn.example.com/selfie.png"

    def test_embedded_url_trailing_punctuation_trimmed(self) -> None:
        text = "Image ready: https://cdn.example.com/selfie.png."
        assert pick_image_candidate(text) == "https://cdn.example.com/selfie.png"

    def test_embedded_data_url(self) -> None:
        text = f"result data:image/jpeg;base64,{PNG_BASE64} done"
        assert pick_image_candidate(text) == f"data:image/jpeg;base64,{PNG_BASE64}"

    def test_chat_picker_needs_longer_base64_run(self) -> None:
        short_run = "prefix " + "A" * 80 + " suffix"
        long_run = "prefix " + "A" * 120 + " suffix"
        assert pick_chat_image_candidate(short_run) is None
        assert pick_chat_image_candidate(long_run) == "data:image/png;base64," + "A" * 120


class TestExtractImageUrl:
    def test_direct_keys_before_nested(self) -> None:
        payload = {"data": {"url": "https://x/nested.png"}, "url": "https://x/direct.png"}
        assert extract_image_url(payload) == "https://x/direct.png"

    def test_nested_lists_are_scanned(self) -> None:
        payload = {"output": {"choices": [{"message": {"content": [{"image": "https://x/c.png"}]}}]}}
        assert extract_image_url(payload) == "https://x/c.png"

    def test_depth_limit_stops_walk(self) -> None:
        payload = {"url": "https://x/deep.png"}
        for _ in range(10):
            payload = {"data": payload}
        assert extract_image_url(payload) is None

    def test_resolve_prefers_configured_paths(self) -> None:
        payload = {"url": "https://x/scan.png", "custom": {"pic": "https://x/path.png"}}
        assert resolve_image_url(payload, ["custom.pic"], extract_image_url) == "https://x/path.png"
        assert resolve_image_url(payload, ["missing"], extract_image_url) == "https://x/scan.png"

    def test_collect_candidates_dedupes(self) -> None:
        payload = {"images": ["https://x/1.png", "https://x/1.png", {"url": "https://x/2.png"}]}
        assert collect_image_candidates(payload) == ["https://x/1.png", "https://x/2.png"]


class TestBuildRequestUrl:
    def test_joins_with_single_slash(self) -> None:
        assert build_request_url("https://api.example.com/v1/", "/images") == "https://api.example.com/v1/images"

    def test_absolute_endpoint_wins(self) -> None:
        assert build_request_url(None, "https://other.example.com/run") == "https://other.example.com/run"

    def test_relative_endpoint_requires_base(self) -> None:
        with pytest.raises(ProviderError) as exc_info:
            build_request_url(None, "/images", "fal")
        assert exc_info.value.code == PROVIDER_CONFIG_INVALID
