"""Unit tests for ImageService."""
import base64
from io import BytesIO
from unittest.mock import Mock

import pytest
import requests
from PIL import Image

from conftest import ImmediateExecutor, make_response
from patchscope.core.exceptions import ImageLoadFailure
from patchscope.core.image_loader import CrossOriginMode, ImageLoadState
from patchscope.services.image_service import ImageService, decode_data_uri, is_remote, to_rgb_array

IMAGE_URL = "https://images.example.com/tattoo.jpg"
ORIGIN = "http://localhost"


def png_bytes(size=(8, 6), color=(200, 10, 10)):
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def session():
    session = Mock()
    session.headers = {}
    return session


@pytest.fixture
def service(session):
    return ImageService(timeout=5, origin=ORIGIN, session=session, executor=ImmediateExecutor())


class TestFetch:
    """Test single fetch attempts."""

    def test_local_file(self, service, sample_image_file):
        loaded = service.fetch(str(sample_image_file))
        assert loaded.size == (70, 70)
        assert loaded.pixel_access
        assert loaded.image.mode == "RGB"

    def test_missing_local_file(self, service, temp_dir):
        with pytest.raises(ImageLoadFailure, match="Cannot read"):
            service.fetch(str(temp_dir / "missing.png"))

    def test_data_uri(self, service):
        uri = "data:image/png;base64," + base64.b64encode(png_bytes()).decode("ascii")
        loaded = service.fetch(uri)
        assert loaded.size == (8, 6)

    def test_anonymous_request_with_cors_grant(self, service, session):
        session.get.return_value = make_response(
            200, content=png_bytes(), headers={"Access-Control-Allow-Origin": "*", "Content-Type": "image/png"})

        loaded = service.fetch(IMAGE_URL, CrossOriginMode.ANONYMOUS)

        session.get.assert_called_once_with(IMAGE_URL, headers={"Origin": ORIGIN}, timeout=5)
        assert loaded.pixel_access
        assert loaded.content_type == "image/png"

    def test_cors_grant_for_exact_origin(self, service, session):
        session.get.return_value = make_response(
            200, content=png_bytes(), headers={"Access-Control-Allow-Origin": ORIGIN})
        assert service.fetch(IMAGE_URL).pixel_access

    def test_anonymous_request_without_cors_grant(self, service, session):
        session.get.return_value = make_response(200, content=png_bytes())
        with pytest.raises(ImageLoadFailure, match="Cross-origin"):
            service.fetch(IMAGE_URL, CrossOriginMode.ANONYMOUS)

    def test_plain_request(self, service, session):
        session.get.return_value = make_response(200, content=png_bytes())

        loaded = service.fetch(IMAGE_URL, CrossOriginMode.NONE)

        session.get.assert_called_once_with(IMAGE_URL, headers={}, timeout=5)
        assert not loaded.pixel_access

    def test_http_error(self, service, session):
        session.get.return_value = make_response(404)
        with pytest.raises(ImageLoadFailure, match="404"):
            service.fetch(IMAGE_URL, CrossOriginMode.NONE)

    def test_transport_error(self, service, session):
        session.get.side_effect = requests.ConnectionError("refused")
        with pytest.raises(ImageLoadFailure):
            service.fetch(IMAGE_URL, CrossOriginMode.NONE)

    def test_undecodable_body(self, service, session):
        session.get.return_value = make_response(200, content=b"<html>not an image</html>")
        with pytest.raises(ImageLoadFailure, match="decode"):
            service.fetch(IMAGE_URL, CrossOriginMode.NONE)


class TestLoad:
    """Test the retrying loader wiring."""

    def test_first_attempt_succeeds(self, service, session):
        session.get.return_value = make_response(
            200, content=png_bytes(), headers={"Access-Control-Allow-Origin": "*"})

        loader = service.load(IMAGE_URL)

        assert loader.state is ImageLoadState.LOADED_RELAXED
        assert session.get.call_count == 1

    def test_falls_back_to_plain_request(self, service, session):
        session.get.return_value = make_response(200, content=png_bytes())
        changes = []

        loader = service.load(IMAGE_URL, on_change=lambda l: changes.append(l.state))

        assert loader.state is ImageLoadState.LOADED_STRICT
        assert loader.attempts == 2
        assert not loader.image.pixel_access
        assert changes == [ImageLoadState.RETRYING_STRICT, ImageLoadState.LOADED_STRICT]

    def test_both_attempts_fail(self, service, session):
        session.get.return_value = make_response(500)

        loader = service.load(IMAGE_URL)

        assert loader.state is ImageLoadState.FAILED
        assert session.get.call_count == 2

    def test_results_go_through_dispatch(self, session):
        dispatched = []
        service = ImageService(session=session, executor=ImmediateExecutor(),
                               dispatch=lambda func, *args: dispatched.append((func, args)))
        session.get.return_value = make_response(200, content=png_bytes(),
                                                 headers={"Access-Control-Allow-Origin": "*"})

        loader = service.load(IMAGE_URL)
        assert loader.state is ImageLoadState.LOADING

        func, args = dispatched.pop()
        func(*args)
        assert loader.state is ImageLoadState.LOADED_RELAXED


class TestDownload:
    """Test saving visualizations."""

    def test_download_data_uri(self, service, temp_dir):
        uri = "data:image/png;base64," + base64.b64encode(png_bytes()).decode("ascii")

        target = service.download(uri, str(temp_dir / "out"), "attention_heatmap.jpg")

        assert target.name == "attention_heatmap.png"
        assert target.exists()
        with Image.open(target) as saved:
            assert saved.size == (8, 6)

    def test_download_failure(self, service, session, temp_dir):
        session.get.return_value = make_response(404)
        with pytest.raises(ImageLoadFailure):
            service.download(IMAGE_URL, str(temp_dir), "x.png")


class TestHelpers:
    """Test module helpers."""

    def test_is_remote(self):
        assert is_remote("https://a/b.png")
        assert not is_remote("/tmp/b.png")
        assert not is_remote("data:image/png;base64,AA==")

    def test_malformed_data_uri(self):
        with pytest.raises(ImageLoadFailure):
            decode_data_uri("data:image/png;base64")

    def test_to_rgb_array(self, sample_image):
        array = to_rgb_array(sample_image)
        assert array.shape == (70, 70, 3)
        assert array.dtype.name == "uint8"
