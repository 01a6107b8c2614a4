import base64
import io

import pytest
from PIL import Image

from posters import InvalidPosterError, normalize_poster, poster_from_bytes


def image_bytes(size, mode='RGB', fmt='PNG'):
    out = io.BytesIO()
    Image.new(mode, size, color=0).save(out, format=fmt)
    return out.getvalue()


def as_data_url(raw, mime='image/png'):
    return f"data:{mime};base64,{base64.b64encode(raw).decode('ascii')}"


def decode(data_url):
    return Image.open(io.BytesIO(base64.b64decode(data_url.split(',', 1)[1])))


def test_large_poster_is_downscaled():
    result = normalize_poster(as_data_url(image_bytes((2000, 1000))), max_size=500)
    assert result.startswith('data:image/jpeg;base64,')
    assert decode(result).size == (500, 250)


def test_transparent_poster_stays_png():
    result = poster_from_bytes(image_bytes((10, 10), mode='RGBA'))
    assert result.startswith('data:image/png;base64,')
    assert decode(result).size == (10, 10)


def test_empty_poster_stays_empty():
    assert normalize_poster('') == ''
    assert normalize_poster(None) == ''


@pytest.mark.parametrize('data_url', [
    'not a data url',
    'data:image/png;base64,@@@',
    as_data_url(b'definitely not an image'),
])
def test_bad_posters_rejected(data_url):
    with pytest.raises(InvalidPosterError):
        normalize_poster(data_url)
