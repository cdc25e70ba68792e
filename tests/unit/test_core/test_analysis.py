"""Unit tests for backend payload ingestion and analysis summaries."""
import pytest

from conftest import analysis_payload, correspondence_payload
from patchscope.core.analysis import (
    build_correspondence_view, format_percent, match_detail_rows, parse_analysis,
    parse_correspondence, parse_search_response, raw_score_rows, score_statistics,
    summarize_analysis,
)
from patchscope.core.correspondence import TopMatchAggregator
from patchscope.core.entities import PatchCoordinate
from patchscope.core.exceptions import MalformedResponseError
from patchscope.core.grid import GridMapper


class TestParseCorrespondence:
    """Test parsing of a single top_correspondences entry."""

    def test_valid_entry(self):
        corr = parse_correspondence(correspondence_payload(10, 7, [(3, 0.92), (4, 0.81)]))

        assert corr.query_index == 10
        assert corr.query_coordinate == PatchCoordinate(1, 3)
        assert [c.index for c in corr.candidates] == [3, 4]
        assert corr.candidates[0].coordinate == PatchCoordinate(0, 3)
        assert corr.candidate(4).similarity == pytest.approx(0.81)
        assert corr.candidate(99) is None

    def test_mismatched_lengths_are_truncated(self, caplog):
        raw = correspondence_payload(10, 7, [(3, 0.92), (4, 0.81), (5, 0.7)])
        raw["similarity_scores"] = [0.92, 0.81]

        corr = parse_correspondence(raw)

        assert len(corr.candidates) == 2
        assert "differ in length" in caplog.text

    def test_unsorted_scores_are_resorted(self, caplog):
        corr = parse_correspondence(correspondence_payload(0, 7, [(1, 0.2), (2, 0.9), (3, 0.5)]))

        assert [c.index for c in corr.candidates] == [2, 3, 1]
        assert "re-sorting" in caplog.text

    def test_truncated_to_top_k(self):
        raw = correspondence_payload(0, 7, [(i, 1 - i / 100) for i in range(15)])
        assert len(parse_correspondence(raw, top_k=10).candidates) == 10

    def test_missing_field(self):
        raw = correspondence_payload(0, 7, [(1, 0.5)])
        del raw["top_candidate_coords"]
        with pytest.raises(MalformedResponseError, match="top_candidate_coords"):
            parse_correspondence(raw)

    @pytest.mark.parametrize("field,value", [
        ("query_patch_idx", "ten"),
        ("query_patch_idx", 1.5),
        ("query_patch_coord", [1]),
        ("top_candidate_indices", "3,4"),
    ])
    def test_wrong_types(self, field, value):
        raw = correspondence_payload(10, 7, [(3, 0.92)])
        raw[field] = value
        with pytest.raises(MalformedResponseError):
            parse_correspondence(raw)


class TestParseAnalysis:
    """Test parsing of a full analysis response."""

    def test_valid_payload(self, sample_payload):
        analysis = parse_analysis(sample_payload)

        assert analysis.query_image_size == (224, 224)
        assert analysis.embedding_model == "clip"
        assert analysis.similarity_analysis.query_patches_count == 49
        assert analysis.attention_matrix_shape == (49, 49)
        assert len(analysis.correspondences) == 3
        assert analysis.visualizations.attention_heatmap.startswith("data:image/png")
        assert analysis.visualizations.top_correspondences is None
        assert analysis.candidate_url is None

    def test_optional_fields(self, sample_payload):
        del sample_payload["attention_matrix_shape"]
        del sample_payload["visualizations"]
        analysis = parse_analysis(sample_payload)
        assert analysis.attention_matrix_shape == (0, 0)
        assert analysis.visualizations is None

    @pytest.mark.parametrize("field", ["top_correspondences", "similarity_analysis", "query_image_size"])
    def test_missing_required_field(self, sample_payload, field):
        del sample_payload[field]
        with pytest.raises(MalformedResponseError, match=field):
            parse_analysis(sample_payload)

    def test_missing_summary_field(self, sample_payload):
        del sample_payload["similarity_analysis"]["query_patches_count"]
        with pytest.raises(MalformedResponseError, match="query_patches_count"):
            parse_analysis(sample_payload)

    def test_correspondences_must_be_list(self, sample_payload):
        sample_payload["top_correspondences"] = {"0": {}}
        with pytest.raises(MalformedResponseError):
            parse_analysis(sample_payload)


class TestParseSearchResponse:
    """Test parsing of search responses."""

    def test_results_with_patch_attention(self):
        response = parse_search_response({
            "caption": "a rose tattoo",
            "results": [
                {"score": 0.91, "url": "https://img/1.jpg",
                 "patch_attention": {"overall_similarity": 0.7, "query_grid_size": 7, "candidate_grid_size": 7}},
                {"score": 0.85, "url": "https://img/2.jpg"},
            ],
            "embedding_model": "clip",
            "patch_attention_enabled": True,
        })

        assert response.caption == "a rose tattoo"
        assert len(response.results) == 2
        assert response.results[0].patch_attention.query_grid_size == 7
        assert response.results[0].patch_attention.attention_summary is None
        assert response.results[1].patch_attention is None
        assert response.patch_attention_enabled

    def test_empty_results(self):
        response = parse_search_response({"caption": "", "results": []})
        assert response.results == []
        assert response.embedding_model == ""

    def test_missing_results(self):
        with pytest.raises(MalformedResponseError):
            parse_search_response({"caption": "x"})

    def test_result_without_url(self):
        with pytest.raises(MalformedResponseError, match="url"):
            parse_search_response({"results": [{"score": 0.5}]})


class TestCorrespondenceView:
    """Test derivation of grids and the store from an analysis."""

    def test_square_grids(self, sample_analysis):
        view = build_correspondence_view(sample_analysis)

        assert view.grid_enabled
        assert view.query_grid == GridMapper(7)
        assert view.candidate_grid == GridMapper(7)
        assert len(view.store) == 3
        assert view.notices == []

    def test_non_square_query_count_disables_grid(self, caplog):
        analysis = parse_analysis(analysis_payload(query_patches=50))
        view = build_correspondence_view(analysis)

        assert view.query_grid is None
        assert view.candidate_grid == GridMapper(7)
        assert not view.grid_enabled
        assert "50 patches cannot form a square grid" in view.notices[0]
        assert "Disabling query grid overlay" in caplog.text
        # raw scores are still available
        assert len(view.store) == 3
        assert len(raw_score_rows(view.store)) == 3

    def test_out_of_grid_references_are_dropped(self):
        payload = analysis_payload(query_patches=16, candidate_patches=16, grid_size=4)
        payload["top_correspondences"] = [
            correspondence_payload(2, 4, [(1, 0.9), (20, 0.8)]),
            correspondence_payload(30, 4, [(3, 0.7)]),
        ]
        view = build_correspondence_view(parse_analysis(payload))

        assert view.store.query_indices() == (2,)
        assert [c.index for c in view.store.get(2).candidates] == [1]
        assert "2 patch references outside the image grid were ignored." in view.notices


class TestSummaries:
    """Test the text summaries shown in the viewer."""

    def test_format_percent(self):
        assert format_percent(0.9512) == "95.1%"
        assert format_percent(0.5, 2) == "50.00%"

    def test_summarize_analysis(self, sample_analysis):
        summary = summarize_analysis(sample_analysis)

        assert summary["overview"]["Overall similarity"] == "71.0%"
        assert summary["overview"]["Max similarity"] == "95.0%"
        assert summary["overview"]["High attention patches"] == "12"
        assert summary["overview"]["Model"] == "clip"
        assert "49 patches" in summary["overview"]["Query image"]
        assert summary["statistics"]["Min"] == "12.00%"
        assert summary["statistics"]["Std deviation"] == "0.0832"
        assert len(summary["preview"]) == 3
        assert summary["preview"][1].endswith("95.0%")

    def test_score_statistics(self, sample_analysis):
        stats = score_statistics(build_correspondence_view(sample_analysis).store)
        assert stats["count"] == 12
        assert stats["max"] == pytest.approx(0.95)
        assert stats["min"] == pytest.approx(0.55)

    def test_score_statistics_empty(self):
        from patchscope.core.correspondence import CorrespondenceStore
        assert score_statistics(CorrespondenceStore())["count"] == 0

    def test_match_detail_rows(self, sample_analysis):
        store = build_correspondence_view(sample_analysis).store
        ranked = TopMatchAggregator(store).aggregate([10, 22])

        rows = match_detail_rows(ranked, store)

        assert rows[0].rank_label == "Rank #1"
        assert rows[0].mapping_label == "Query (3, 1) -> (0, 3)"
        assert rows[0].similarity_label == "95.0% similarity"
        assert rows[0].band == "best"
        assert [r.band for r in rows] == ["best", "best", "best", "good", "good"]
