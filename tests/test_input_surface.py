"""
Tests for input_surface.py: brush painting and image-to-grid conversion.
"""
import io

import numpy as np
import pytest
import requests
from PIL import Image

import input_surface
from input_surface import blank_grid, image_to_grid, load_grid, load_image, paint, parse_points, stroke


def _png_bytes(image):
    buf = io.BytesIO()
    image.save(buf, format='PNG')
    return buf.getvalue()


class FakeResponse:

    def __init__(self, content, status=200, fail_after=None):
        self.content = content
        self.status = status
        self.fail_after = fail_after

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def iter_content(self, chunk_size=8192):
        if self.fail_after is not None:
            yield self.content[:self.fail_after]
            raise requests.ConnectionError("connection reset")
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i:i + chunk_size]


class TestBrush:

    def test_blank_grid(self):
        grid = blank_grid(14)
        assert grid.shape == (196,)
        assert grid.dtype == np.float32
        assert not grid.any()

    def test_paint_center(self):
        grid = blank_grid(5)
        painted = paint(grid, 5, 2, 2)
        image = painted.reshape(5, 5)
        assert image[2, 2] == 1.0
        assert image[1, 2] == image[3, 2] == image[2, 1] == image[2, 3] == 0.5
        assert image.sum() == 3.0
        assert not grid.any()

    def test_paint_corner_clips_brush(self):
        painted = paint(blank_grid(4), 4, 0, 0).reshape(4, 4)
        assert painted[0, 0] == 1.0
        assert painted[0, 1] == painted[1, 0] == 0.5
        assert np.count_nonzero(painted) == 3

    def test_repeated_paint_saturates(self):
        grid = paint(paint(blank_grid(5), 5, 2, 2), 5, 2, 2).reshape(5, 5)
        assert grid[2, 2] == 1.0
        assert grid[1, 2] == 1.0
        assert grid.max() == 1.0

    def test_paint_outside_grid_is_noop(self):
        grid = blank_grid(5)
        painted = paint(grid, 5, 5, 0)
        assert painted is not grid
        np.testing.assert_array_equal(painted, grid)

    def test_stroke_follows_points(self):
        grid = stroke(blank_grid(6), 6, [(0, 3), (1, 3), (2, 3)]).reshape(6, 6)
        assert grid[3, 0] == grid[3, 1] == grid[3, 2] == 1.0
        assert grid[2, 1] == 0.5

    def test_parse_points(self):
        assert parse_points("2,3 3,3;4,3") == [(2, 3), (3, 3), (4, 3)]
        assert parse_points("  ") == []

    @pytest.mark.parametrize("text", ["2,3,4", "2", "a,b"])
    def test_parse_points_rejects_malformed(self, text):
        with pytest.raises(ValueError):
            parse_points(text)


class TestImageToGrid:

    def test_white_image(self):
        grid = image_to_grid(Image.new('RGB', (8, 8), (255, 255, 255)), 4)
        assert grid.shape == (16,)
        np.testing.assert_allclose(grid, 1.0, atol=1e-6)

    def test_channels_are_averaged(self):
        grid = image_to_grid(Image.new('RGB', (4, 4), (255, 0, 0)), 4)
        np.testing.assert_allclose(grid, 1 / 3, atol=1e-6)

    def test_transparent_reads_black(self):
        grid = image_to_grid(Image.new('RGBA', (4, 4), (255, 255, 255, 0)), 4)
        assert not grid.any()

    def test_same_size_keeps_pixels(self):
        image = Image.new('L', (4, 4), 0)
        image.putpixel((1, 2), 255)
        grid = image_to_grid(image, 4)
        assert grid[2 * 4 + 1] == 1.0
        assert grid.sum() == 1.0


class TestLoading:

    def test_load_from_path(self, tmp_path):
        path = tmp_path / 'white.png'
        Image.new('RGB', (6, 6), (255, 255, 255)).save(path)
        grid = load_grid(str(path), 3)
        np.testing.assert_allclose(grid, 1.0, atol=1e-6)

    def test_load_from_file_object(self):
        data = _png_bytes(Image.new('RGB', (3, 3), (0, 0, 0)))
        grid = load_grid(io.BytesIO(data), 3)
        assert not grid.any()

    def test_load_from_url_downloads_once(self, tmp_path, monkeypatch):
        data = _png_bytes(Image.new('RGB', (5, 5), (255, 255, 255)))
        calls = []

        def fake_get(url, stream=False, timeout=None):
            calls.append(url)
            return FakeResponse(data)

        monkeypatch.setattr(input_surface.requests, 'get', fake_get)
        url = 'https://example.com/images/digit.png'
        image = load_image(url, data_dir=str(tmp_path))
        assert image.size == (5, 5)
        assert [p.name.endswith('-digit.png') for p in tmp_path.iterdir()] == [True]

        load_image(url, data_dir=str(tmp_path))
        assert calls == [url]

    def test_http_error_propagates(self, tmp_path, monkeypatch):
        monkeypatch.setattr(input_surface.requests, 'get',
                            lambda url, stream=False, timeout=None: FakeResponse(b'', status=404))
        with pytest.raises(requests.HTTPError):
            load_image('https://example.com/missing.png', data_dir=str(tmp_path))
        assert list(tmp_path.iterdir()) == []

    def test_not_an_image(self, tmp_path):
        path = tmp_path / 'notes.png'
        path.write_bytes(b'not an image')
        with pytest.raises(OSError):
            load_image(str(path))

    def test_urls_sharing_a_filename_are_cached_apart(self, tmp_path, monkeypatch):
        pages = {
            'https://a.example/x/img.png': _png_bytes(Image.new('RGB', (3, 3), (255, 255, 255))),
            'https://b.example/img.png': _png_bytes(Image.new('RGB', (3, 3), (0, 0, 0))),
        }
        monkeypatch.setattr(input_surface.requests, 'get',
                            lambda url, stream=False, timeout=None: FakeResponse(pages[url]))
        white = load_grid('https://a.example/x/img.png', 3, data_dir=str(tmp_path))
        black = load_grid('https://b.example/img.png', 3, data_dir=str(tmp_path))
        np.testing.assert_allclose(white, 1.0, atol=1e-6)
        assert not black.any()
        assert len(list(tmp_path.iterdir())) == 2

    def test_urls_without_path_are_cached_apart(self, tmp_path, monkeypatch):
        pages = {
            'https://a.example': _png_bytes(Image.new('RGB', (2, 2), (255, 255, 255))),
            'https://b.example': _png_bytes(Image.new('RGB', (2, 2), (0, 0, 0))),
        }
        monkeypatch.setattr(input_surface.requests, 'get',
                            lambda url, stream=False, timeout=None: FakeResponse(pages[url]))
        assert load_grid('https://a.example', 2, data_dir=str(tmp_path)).all()
        assert not load_grid('https://b.example', 2, data_dir=str(tmp_path)).any()

    def test_interrupted_download_leaves_no_file(self, tmp_path, monkeypatch):
        data = _png_bytes(Image.new('RGB', (4, 4), (255, 255, 255)))
        responses = [FakeResponse(data, fail_after=10), FakeResponse(data)]
        monkeypatch.setattr(input_surface.requests, 'get',
                            lambda url, stream=False, timeout=None: responses.pop(0))
        url = 'https://example.com/d.png'
        with pytest.raises(requests.ConnectionError):
            load_image(url, data_dir=str(tmp_path))
        assert list(tmp_path.iterdir()) == []

        grid = load_grid(url, 4, data_dir=str(tmp_path))
        np.testing.assert_allclose(grid, 1.0, atol=1e-6)
        assert not responses
