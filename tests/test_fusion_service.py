"""Tests for the fusion capability handlers."""

import json

import pytest
from httpx import Response

from conftest import GEMINI_HOST, IMAGE_PATH, TEXT_PATH, image_response, text_response
from fusion.app.exceptions import (
    ConfigurationError,
    RateLimitedError,
    UpstreamContentError,
    UpstreamTransportError,
    ValidationError,
)
from fusion.app.services.fusion import (
    build_image_prompt,
    extract_image_data,
    extract_text,
    parse_suggestion,
    sanitize,
)

CLIENT = "203.0.113.7"


def _sent_json(route) -> dict:
    return json.loads(route.calls.last.request.content)


class TestHelpers:

    def test_sanitize_strips_angle_brackets_and_whitespace(self):
        assert sanitize("  <script>alert(1)</script> ") == "scriptalert(1)/script"

    def test_image_prompt_without_theme(self):
        prompt = build_image_prompt("cat", "toaster")
        assert '"cat" and a "toaster". The final image' in prompt

    def test_image_prompt_with_theme(self):
        prompt = build_image_prompt("cat", "toaster", "steampunk")
        assert '"toaster", with a steampunk theme.' in prompt

    @pytest.mark.parametrize(
        "result",
        [{}, {"candidates": []}, {"candidates": [{"content": {}}]}, {"candidates": None}],
    )
    def test_extract_text_missing(self, result):
        assert extract_text(result) is None

    def test_extract_image_data_missing(self):
        assert extract_image_data({"predictions": [{}]}) is None
        assert extract_image_data({"predictions": [{"bytesBase64Encoded": ""}]}) is None

    def test_parse_suggestion(self):
        assert parse_suggestion('{"item1": "Owl", "item2": "Submarine"}') == {
            "item1": "Owl",
            "item2": "Submarine",
        }

    @pytest.mark.parametrize("text", ["not json", "[1, 2]", '{"item1": "Owl"}', '{"item1": "", "item2": "x"}'])
    def test_parse_suggestion_invalid(self, text):
        with pytest.raises(UpstreamContentError):
            parse_suggestion(text)


class TestGenerateImage:

    @pytest.mark.asyncio
    async def test_success(self, fusion_service, gemini_mock):
        route = gemini_mock.post(host=GEMINI_HOST, path=IMAGE_PATH).mock(
            return_value=Response(200, json=image_response("Zm9v"))
        )

        result = await fusion_service.generate_image(CLIENT, "cat", "toaster", "neon")

        assert result["success"] is True
        assert result["imageData"] == "Zm9v"
        assert "with a neon theme" in result["prompt"]
        sent = _sent_json(route)
        assert sent["instances"][0]["prompt"] == result["prompt"]
        assert sent["parameters"] == {"sampleCount": 1}
        assert route.calls.last.request.url.params["key"] == "test-key"

    @pytest.mark.asyncio
    async def test_input_of_101_chars_rejected_without_upstream_call(
        self, fusion_service, gemini_mock
    ):
        route = gemini_mock.post(host=GEMINI_HOST, path=IMAGE_PATH).mock(
            return_value=Response(200, json=image_response())
        )

        with pytest.raises(ValidationError) as exc_info:
            await fusion_service.generate_image(CLIENT, "a" * 101, "toaster")

        assert exc_info.value.status_code == 400
        assert route.call_count == 0

    @pytest.mark.asyncio
    async def test_input_of_100_chars_accepted(self, fusion_service, gemini_mock):
        gemini_mock.post(host=GEMINI_HOST, path=IMAGE_PATH).mock(
            return_value=Response(200, json=image_response())
        )

        result = await fusion_service.generate_image(CLIENT, "a" * 100, "toaster")
        assert result["success"] is True

    @pytest.mark.asyncio
    async def test_theme_too_long(self, fusion_service):
        with pytest.raises(ValidationError, match="Theme must be less than 50"):
            await fusion_service.generate_image(CLIENT, "cat", "toaster", "t" * 51)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("input1,input2", [(None, "x"), ("x", ""), ("   ", "x"), ("<>", "x")])
    async def test_missing_inputs(self, fusion_service, input1, input2):
        with pytest.raises(ValidationError, match="Both input1 and input2 are required"):
            await fusion_service.generate_image(CLIENT, input1, input2)

    @pytest.mark.asyncio
    async def test_script_tag_stripped_from_outbound_prompt(self, fusion_service, gemini_mock):
        route = gemini_mock.post(host=GEMINI_HOST, path=IMAGE_PATH).mock(
            return_value=Response(200, json=image_response())
        )

        await fusion_service.generate_image(CLIENT, "<script>alert(1)</script>", "cat", "<b>")

        prompt = _sent_json(route)["instances"][0]["prompt"]
        assert "<" not in prompt and ">" not in prompt
        assert '"scriptalert(1)/script"' in prompt
        assert "with a b theme" in prompt

    @pytest.mark.asyncio
    async def test_missing_image_data_is_content_error_without_retry(
        self, fusion_service, gemini_mock, sleep_recorder
    ):
        route = gemini_mock.post(host=GEMINI_HOST, path=IMAGE_PATH).mock(
            return_value=Response(200, json={"predictions": []})
        )

        with pytest.raises(UpstreamContentError) as exc_info:
            await fusion_service.generate_image(CLIENT, "cat", "toaster")

        assert exc_info.value.public_message == "Failed to generate image. Please try again."
        assert route.call_count == 1
        assert sleep_recorder.delays == []

    @pytest.mark.asyncio
    async def test_upstream_failure_is_transport_error(self, fusion_service, gemini_mock):
        gemini_mock.post(host=GEMINI_HOST, path=IMAGE_PATH).mock(
            return_value=Response(403, json={"error": {"message": "quota project missing"}})
        )

        with pytest.raises(UpstreamTransportError) as exc_info:
            await fusion_service.generate_image(CLIENT, "cat", "toaster")

        assert exc_info.value.message == "quota project missing"
        assert exc_info.value.public_message == "Failed to generate image. Please try again."
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_rate_limited_after_threshold(self, fusion_service, gemini_mock):
        route = gemini_mock.post(host=GEMINI_HOST, path=IMAGE_PATH).mock(
            return_value=Response(200, json=image_response())
        )

        for _ in range(10):
            await fusion_service.generate_image(CLIENT, "cat", "toaster")

        with pytest.raises(RateLimitedError) as exc_info:
            await fusion_service.generate_image(CLIENT, "cat", "toaster")

        assert exc_info.value.status_code == 429
        assert route.call_count == 10

    @pytest.mark.asyncio
    async def test_rate_limit_resets_after_window(self, fusion_service, gemini_mock, fake_clock):
        gemini_mock.post(host=GEMINI_HOST, path=IMAGE_PATH).mock(
            return_value=Response(200, json=image_response())
        )
        for _ in range(10):
            await fusion_service.generate_image(CLIENT, "cat", "toaster")

        fake_clock.advance(61)

        result = await fusion_service.generate_image(CLIENT, "cat", "toaster")
        assert result["success"] is True

    @pytest.mark.asyncio
    async def test_invalid_input_does_not_consume_rate_budget(self, fusion_service):
        for _ in range(20):
            with pytest.raises(ValidationError):
                await fusion_service.generate_image(CLIENT, "", "toaster")

        assert fusion_service.rate_limiter.limiter_for("image").get_state(CLIENT) is None

    @pytest.mark.asyncio
    async def test_missing_api_key(self, fusion_service, gemini_mock):
        route = gemini_mock.post(host=GEMINI_HOST, path=IMAGE_PATH)
        fusion_service.provider.api_key = ""

        with pytest.raises(ConfigurationError) as exc_info:
            await fusion_service.generate_image(CLIENT, "cat", "toaster")

        assert exc_info.value.public_message == "Server configuration error"
        assert route.call_count == 0


class TestGenerateDescription:

    @pytest.mark.asyncio
    async def test_success(self, fusion_service, gemini_mock):
        route = gemini_mock.post(host=GEMINI_HOST, path=TEXT_PATH).mock(
            return_value=Response(200, json=text_response("  A purring appliance.  "))
        )

        result = await fusion_service.generate_description(CLIENT, "cat", "toaster")

        assert result == {"success": True, "description": "A purring appliance."}
        prompt = _sent_json(route)["contents"][0]["parts"][0]["text"]
        assert 'fusion of a "cat" and a "toaster"' in prompt

    @pytest.mark.asyncio
    async def test_empty_text_is_content_error(self, fusion_service, gemini_mock):
        gemini_mock.post(host=GEMINI_HOST, path=TEXT_PATH).mock(
            return_value=Response(200, json=text_response("   "))
        )

        with pytest.raises(UpstreamContentError):
            await fusion_service.generate_description(CLIENT, "cat", "toaster")

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, fusion_service, gemini_mock, sleep_recorder):
        gemini_mock.post(host=GEMINI_HOST, path=TEXT_PATH).mock(
            side_effect=[Response(503), Response(429), Response(200, json=text_response("ok"))]
        )

        result = await fusion_service.generate_description(CLIENT, "cat", "toaster")

        assert result["description"] == "ok"
        assert sleep_recorder.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_threshold_is_fifteen(self, fusion_service, gemini_mock):
        gemini_mock.post(host=GEMINI_HOST, path=TEXT_PATH).mock(
            return_value=Response(200, json=text_response("ok"))
        )
        for _ in range(15):
            await fusion_service.generate_description(CLIENT, "cat", "toaster")

        with pytest.raises(RateLimitedError):
            await fusion_service.generate_description(CLIENT, "cat", "toaster")


class TestSuggestIdeas:

    @pytest.mark.asyncio
    async def test_success_requests_json_schema(self, fusion_service, gemini_mock):
        route = gemini_mock.post(host=GEMINI_HOST, path=TEXT_PATH).mock(
            return_value=Response(
                200, json=text_response('{"item1": "Volcano", "item2": "Teacup"}')
            )
        )

        result = await fusion_service.suggest_ideas(CLIENT)

        assert result == {"success": True, "item1": "Volcano", "item2": "Teacup"}
        config = _sent_json(route)["generationConfig"]
        assert config["responseMimeType"] == "application/json"
        assert config["responseSchema"]["required"] == ["item1", "item2"]

    @pytest.mark.asyncio
    async def test_malformed_suggestion_not_retried(self, fusion_service, gemini_mock):
        route = gemini_mock.post(host=GEMINI_HOST, path=TEXT_PATH).mock(
            return_value=Response(200, json=text_response("Volcano and Teacup"))
        )

        with pytest.raises(UpstreamContentError) as exc_info:
            await fusion_service.suggest_ideas(CLIENT)

        assert exc_info.value.public_message == "Failed to generate suggestions. Please try again."
        assert route.call_count == 1


class TestGenerateLore:

    @pytest.mark.asyncio
    async def test_success(self, fusion_service, gemini_mock):
        route = gemini_mock.post(host=GEMINI_HOST, path=TEXT_PATH).mock(
            return_value=Response(200, json=text_response("Long ago... "))
        )

        result = await fusion_service.generate_lore(CLIENT, "A <purring> toaster.")

        assert result == {"success": True, "lore": "Long ago..."}
        prompt = _sent_json(route)["contents"][0]["parts"][0]["text"]
        assert 'Based on this description: "A purring toaster."' in prompt

    @pytest.mark.asyncio
    async def test_description_required(self, fusion_service):
        with pytest.raises(ValidationError, match="A description is required"):
            await fusion_service.generate_lore(CLIENT, None)

    @pytest.mark.asyncio
    async def test_description_too_long(self, fusion_service):
        with pytest.raises(ValidationError, match="less than 2000"):
            await fusion_service.generate_lore(CLIENT, "x" * 2001)
