# posters.py
import base64
import binascii
import io
import re

from PIL import Image, UnidentifiedImageError

DATA_URL_PATTERN = re.compile(r'data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[\w.+=-]+)*;base64,(?P<data>.*)', re.S)
DEFAULT_MAX_SIZE = 1024


class InvalidPosterError(ValueError):
    pass


def decode_data_url(data_url):
    match = DATA_URL_PATTERN.fullmatch(data_url.strip())
    if not match:
        raise InvalidPosterError('Poster must be a base64 data URL.')
    try:
        return base64.b64decode(match.group('data'), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidPosterError('Poster data is not valid base64.') from exc


def poster_from_bytes(raw, max_size=DEFAULT_MAX_SIZE):
    """Verify ``raw`` is an image and return it, downscaled, as a data URL."""
    try:
        img = Image.open(io.BytesIO(raw))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise InvalidPosterError('Unable to read the poster file. Please try a different image.') from exc

    if img.mode in ('RGBA', 'LA', 'P'):
        fmt, mime = 'PNG', 'image/png'
    else:
        img = img.convert('RGB')
        fmt, mime = 'JPEG', 'image/jpeg'
    img.thumbnail((max_size, max_size))

    out = io.BytesIO()
    if fmt == 'JPEG':
        img.save(out, format=fmt, quality=85)
    else:
        img.save(out, format=fmt)
    return f"data:{mime};base64,{base64.b64encode(out.getvalue()).decode('ascii')}"


def normalize_poster(data_url, max_size=DEFAULT_MAX_SIZE):
    if not data_url:
        return ''
    return poster_from_bytes(decode_data_url(data_url), max_size)
