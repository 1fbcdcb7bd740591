"""
Tests for request assembly, the analysis client and response parsing.
"""

import asyncio
import json

import httpx
import pytest

from conftest import ANALYSIS_RESPONSE, ANALYSIS_URL, FakeLocationProvider, make_jpeg
from tagscan.analysis.request_assembler import RequestAssembler
from tagscan.analysis.result import AnalysisResult, Decision
from tagscan.errors import AnalysisServiceError, PayloadTooLargeError, SubmissionValidationError
from tagscan.ghost.ghost_mode import GhostMode
from tagscan.models import (
    DocumentType,
    ItemKind,
    ItemMetadata,
    SubmissionItem,
    SubmissionRequest,
)
from tagscan.processing.compression import (
    CompressionOptions,
    estimate_data_url_size,
    from_data_url,
    to_data_url,
)


def _ghost(ready: bool = True) -> GhostMode:
    ghost = GhostMode(FakeLocationProvider())
    asyncio.run(ghost.toggle(True))
    if ready:
        ghost.update_store(type="flea", name="Sunday Market")
        ghost.set_shelf_price(8)
    return ghost


def _request() -> SubmissionRequest:
    return SubmissionRequest(
        items=[SubmissionItem(kind=ItemKind.PHOTO, name="Photo 1", payload=to_data_url(b"x"))]
    )


class TestRequestAssembler:
    """Tests for validation and payload shaping."""

    def test_empty_selection_rejected(self):
        with pytest.raises(SubmissionValidationError):
            RequestAssembler().build([])

    def test_ghost_not_ready_rejected(self, make_item):
        with pytest.raises(SubmissionValidationError, match="ghost"):
            RequestAssembler().build([make_item()], ghost=_ghost(ready=False))

    def test_payload_shape(self, make_item, small_jpeg):
        request = RequestAssembler().build(
            [make_item(name="Photo 1")],
            durable_urls=["https://s/1.jpg"],
            category="furniture",
        )
        payload = request.to_payload()

        assert payload["scanType"] == "multi-modal"
        assert payload["originalImageUrls"] == ["https://s/1.jpg"]
        assert payload["category_id"] == "furniture"
        assert payload["subcategory_id"] == "general"
        assert "ghostMode" not in payload
        item = payload["items"][0]
        assert item["type"] == "photo"
        assert item["name"] == "Photo 1"
        assert from_data_url(item["data"]) == (small_jpeg, "image/jpeg")
        assert item["additionalFrames"] == []

    def test_ready_ghost_is_attached(self, make_item):
        ghost = _ghost()
        request = RequestAssembler().build([make_item()], ghost=ghost)

        ghost_mode = request.to_payload()["ghostMode"]
        assert ghost_mode["storeName"] == "Sunday Market"
        assert ghost_mode["storeType"] == "flea"
        assert ghost_mode["shelfPrice"] == 8
        assert ghost_mode["location"]["lat"] == pytest.approx(40.7128)
        # Later edits do not leak into a built request
        ghost.set_shelf_price(99)
        assert request.ghost.shelf_price == 8

    def test_disabled_ghost_is_not_attached(self, make_item):
        ghost = GhostMode(FakeLocationProvider())
        request = RequestAssembler().build([make_item()], ghost=ghost)
        assert request.ghost is None

    def test_video_sends_frames(self, make_item):
        frames = [make_jpeg(32, 24, quality=q) for q in (50, 60, 70)]
        item = make_item(
            kind=ItemKind.VIDEO,
            name="Video 1",
            payload=frames[0],
            metadata=ItemMetadata(video_frames=frames),
        )
        data = RequestAssembler().build([item]).to_payload()["items"][0]

        assert data["type"] == "video"
        assert from_data_url(data["data"])[0] == frames[0]
        assert [from_data_url(f)[0] for f in data["additionalFrames"]] == frames[1:]
        assert data["metadata"]["frameCount"] == 3

    def test_video_without_frames_uses_thumbnail(self, make_item, small_jpeg):
        item = make_item(kind=ItemKind.VIDEO, payload=small_jpeg)
        data = RequestAssembler().build([item]).to_payload()["items"][0]
        assert from_data_url(data["data"])[0] == item.thumbnail
        assert data["additionalFrames"] == []

    def test_document_keeps_mime_type(self, make_item):
        item = make_item(
            kind=ItemKind.DOCUMENT,
            name="receipt.pdf",
            payload=b"%PDF-1.4 fake",
            content_type="application/pdf",
            metadata=ItemMetadata(document_type=DocumentType.RECEIPT),
        )
        data = RequestAssembler().build([item]).to_payload()["items"][0]

        assert data["data"].startswith("data:application/pdf;base64,")
        assert data["metadata"]["documentType"] == "receipt"

    def test_oversized_item_is_recompressed(self, make_item):
        big = make_jpeg(400, 400, quality=100, noise=True)
        assembler = RequestAssembler(
            item_ceiling_mb=0.1, tight_options=CompressionOptions(max_size_mb=0.08, quality=0.75)
        )
        data = assembler.build([make_item(payload=big)]).to_payload()["items"][0]

        assert estimate_data_url_size(data["data"]) < len(big)
        assert data["data"].startswith("data:image/jpeg;base64,")

    def test_request_over_ceiling(self, make_item):
        assembler = RequestAssembler(request_ceiling_mb=0.001)
        items = [make_item(payload=make_jpeg(200, 200, noise=True))]

        with pytest.raises(PayloadTooLargeError) as exc_info:
            assembler.build(items)
        assert exc_info.value.retriable
        assert exc_info.value.size_bytes > 1024

    def test_encoded_size_matches_json(self, make_item):
        request = RequestAssembler().build([make_item()])
        assert RequestAssembler.encoded_size(request) == len(json.dumps(request.to_payload()))


class TestAnalysisResult:
    """Tests for response normalization."""

    def test_camel_case_response(self):
        result = AnalysisResult.model_validate(ANALYSIS_RESPONSE)

        assert result.id == "scan-123"
        assert result.item_name == "Vintage Brass Lamp"
        assert result.estimated_value == 42.5
        assert result.decision == Decision.BUY
        assert result.confidence_score == 0.82
        assert result.valuation_factors == ["Material", "Condition"]
        assert [v.provider_name for v in result.consensus_votes] == ["alpha", "beta"]
        assert result.consensus_votes[1].decision == Decision.HOLD
        assert result.raw == ANALYSIS_RESPONSE

    def test_defaults_for_sparse_response(self):
        result = AnalysisResult.model_validate({})

        assert result.item_name == "Unknown Item"
        assert result.estimated_value == 0.0
        assert result.decision == Decision.HOLD
        assert result.summary_reasoning == "Analysis complete"
        assert result.consensus_votes == []
        assert result.id

    def test_unknown_decision_is_hold(self):
        assert AnalysisResult.model_validate({"decision": "maybe"}).decision == Decision.HOLD
        assert AnalysisResult.model_validate({"decision": "sell"}).decision == Decision.SELL

    def test_votes_as_dict(self):
        result = AnalysisResult.model_validate(
            {"consensus": {"gpt": {"estimatedValue": 10}, "claude": {"estimatedValue": 12}}}
        )
        assert sorted(v.provider_name for v in result.consensus_votes) == ["claude", "gpt"]

    def test_votes_from_raw_response(self):
        result = AnalysisResult.model_validate(
            {"hydraConsensus": {"allVotes": [
                {"model": "m1", "rawResponse": {"estimatedValue": 7, "decision": "SELL"}}
            ]}}
        )
        vote = result.consensus_votes[0]
        assert (vote.provider_name, vote.estimated_value, vote.decision) == ("m1", 7, Decision.SELL)

    def test_non_object_raw_response_uses_defaults(self):
        result = AnalysisResult.model_validate(
            {"hydraConsensus": {"allVotes": [{"model": "m1", "rawResponse": "timeout"}]}}
        )
        vote = result.consensus_votes[0]
        assert (vote.provider_name, vote.estimated_value, vote.decision) == ("m1", 0.0, Decision.HOLD)

    def test_single_factor_string(self):
        result = AnalysisResult.model_validate({"valuation_factors": "Rarity"})
        assert result.valuation_factors == ["Rarity"]

    def test_non_object_rejected(self):
        with pytest.raises(ValueError):
            AnalysisResult.model_validate(["not", "an", "object"])


class TestAnalysisClient:
    """Tests for the analysis HTTP client."""

    def test_posts_request_with_bearer(self, make_analysis):
        client, handler = make_analysis()
        result = asyncio.run(client.analyze(_request(), "tok-1"))

        assert result.estimated_value == 42.5
        request = handler.requests[0]
        assert str(request.url) == f"{ANALYSIS_URL}/api/analyze"
        assert request.headers["Authorization"] == "Bearer tok-1"
        body = json.loads(request.content)
        assert body["scanType"] == "multi-modal"
        assert body["items"][0]["name"] == "Photo 1"

    def test_missing_token(self, make_analysis):
        client, handler = make_analysis()
        with pytest.raises(AnalysisServiceError):
            asyncio.run(client.analyze(_request(), ""))
        assert handler.requests == []

    def test_413_is_payload_too_large(self, make_analysis):
        client, _ = make_analysis(lambda r: httpx.Response(413))
        with pytest.raises(PayloadTooLargeError):
            asyncio.run(client.analyze(_request(), "tok"))

    def test_payload_too_large_body(self, make_analysis):
        client, _ = make_analysis(
            lambda r: httpx.Response(400, json={"error": "PAYLOAD_TOO_LARGE"})
        )
        with pytest.raises(PayloadTooLargeError):
            asyncio.run(client.analyze(_request(), "tok"))

    def test_server_error_is_retriable(self, make_analysis):
        client, handler = make_analysis(lambda r: httpx.Response(502, text="bad gateway"))
        with pytest.raises(AnalysisServiceError) as exc_info:
            asyncio.run(client.analyze(_request(), "tok"))

        assert exc_info.value.status_code == 502
        assert exc_info.value.retriable
        assert len(handler.requests) == 1

    def test_client_error_is_not_retriable(self, make_analysis):
        client, _ = make_analysis(lambda r: httpx.Response(401, text="unauthorized"))
        with pytest.raises(AnalysisServiceError) as exc_info:
            asyncio.run(client.analyze(_request(), "tok"))
        assert not exc_info.value.retriable

    def test_invalid_json(self, make_analysis):
        client, _ = make_analysis(lambda r: httpx.Response(200, text="<html>"))
        with pytest.raises(AnalysisServiceError, match="invalid JSON"):
            asyncio.run(client.analyze(_request(), "tok"))

    @pytest.mark.parametrize("body", [{"estimatedValue": "N/A"}, [1, 2, 3]], ids=["bad-value", "array"])
    def test_unexpected_response_shape(self, make_analysis, body):
        client, _ = make_analysis(lambda r: httpx.Response(200, json=body))
        with pytest.raises(AnalysisServiceError, match="unexpected response") as exc_info:
            asyncio.run(client.analyze(_request(), "tok"))
        assert exc_info.value.status_code == 200

    def test_transport_error(self, make_analysis):
        def respond(request):
            raise httpx.ConnectError("refused", request=request)

        client, _ = make_analysis(respond)
        with pytest.raises(AnalysisServiceError, match="failed"):
            asyncio.run(client.analyze(_request(), "tok"))
