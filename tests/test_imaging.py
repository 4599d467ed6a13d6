import base64

import numpy as np
import pytest

from attendance_backend.errors import InvalidImage
from attendance_backend.matching.imaging import decode_image, to_data_url, to_grayscale

from conftest import make_print, png_of


def test_decode_png_bytes():
    image = make_print(1)
    pixels = decode_image(png_of(image))
    assert pixels.dtype == np.float64
    assert pixels.shape == image.shape
    np.testing.assert_array_equal(pixels, image)


def test_decode_data_url():
    image = make_print(2)
    np.testing.assert_array_equal(decode_image(to_data_url(png_of(image))), image)


def test_decode_unpadded_base64url():
    image = make_print(3)
    text = base64.urlsafe_b64encode(png_of(image)).decode("ascii").rstrip("=")
    np.testing.assert_array_equal(decode_image(text), image)


def test_color_raster_becomes_grayscale():
    rgb = np.zeros((4, 6, 3), dtype=np.uint8)
    rgb[..., 1] = 200
    gray = to_grayscale(rgb)
    assert gray.shape == (4, 6)
    assert np.all(gray > 0)


def test_raster_passthrough():
    image = make_print(4)
    np.testing.assert_array_equal(decode_image(image), image)


@pytest.mark.parametrize("source", [
    b"",
    b"definitely not an image",
    "data:image/png,rawdata",
    "***not base64***",
    12345,
])
def test_undecodable_sources_raise(source):
    with pytest.raises(InvalidImage):
        decode_image(source)
