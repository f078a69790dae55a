import hashlib
import os
from urllib.parse import urlparse

import numpy as np
import requests
from PIL import Image


DEFAULT_GRID_SIZE = 14
MIN_GRID_SIZE = 3
MAX_GRID_SIZE = 14

# (dx, dy, amount) added around the painted cell
BRUSH = (
    (0, 0, 1.0),
    (1, 0, 0.5), (-1, 0, 0.5),
    (0, 1, 0.5), (0, -1, 0.5),
)


def blank_grid(grid_size):
    return np.zeros(grid_size * grid_size, dtype=np.float32)


def paint(grid, grid_size, x, y):
    new_grid = np.array(grid, dtype=np.float32, copy=True).reshape(-1)
    if not (0 <= x < grid_size and 0 <= y < grid_size):
        return new_grid
    for dx, dy, amount in BRUSH:
        bx, by = x + dx, y + dy
        if 0 <= bx < grid_size and 0 <= by < grid_size:
            idx = by * grid_size + bx
            new_grid[idx] = min(1.0, new_grid[idx] + amount)
    return new_grid


def stroke(grid, grid_size, points):
    for x, y in points:
        grid = paint(grid, grid_size, x, y)
    return np.array(grid, dtype=np.float32, copy=True).reshape(-1)


def parse_points(text):
    # "x,y x,y ..." with whitespace or ';' between points
    points = []
    for token in text.replace(';', ' ').split():
        parts = token.split(',')
        if len(parts) != 2:
            raise ValueError(f"expected x,y but got {token!r}")
        points.append((int(parts[0]), int(parts[1])))
    return points


def download_file(url, filepath):
    if os.path.exists(filepath):
        return

    print(f"Downloading {os.path.basename(filepath)}...")
    response = requests.get(url, stream=True, timeout=30)
    response.raise_for_status()

    # only a complete download is moved to filepath
    partial = filepath + '.part'
    try:
        with open(partial, 'wb') as f:
            for chunk in response.iter_content(chunk_size=8192):
                f.write(chunk)
    except BaseException:
        if os.path.exists(partial):
            os.remove(partial)
        raise
    os.replace(partial, filepath)
    print(f"{os.path.basename(filepath)}")


def _is_url(source):
    return isinstance(source, str) and urlparse(source).scheme in ('http', 'https')


def load_image(source, data_dir='data'):
    """Open an image from a path, an uploaded file object, or an http(s) URL.

    URLs are downloaded into ``data_dir`` once and read from disk afterwards.
    """
    if _is_url(source):
        os.makedirs(data_dir, exist_ok=True)
        digest = hashlib.sha1(source.encode()).hexdigest()[:12]
        filename = f"{digest}-{os.path.basename(urlparse(source).path) or 'image'}"
        filepath = os.path.join(data_dir, filename)
        download_file(source, filepath)
        source = filepath
    image = Image.open(source)
    image.load()
    return image


def image_to_grid(image, grid_size):
    # transparent pixels read as black, like drawing onto a black canvas
    rgba = image.convert('RGBA')
    background = Image.new('RGBA', rgba.size, (0, 0, 0, 255))
    flattened = Image.alpha_composite(background, rgba).convert('RGB')
    resized = flattened.resize((grid_size, grid_size), Image.Resampling.BILINEAR)
    rgb = np.asarray(resized, dtype=np.float32)
    return (rgb.sum(axis=2) / 3 / 255).reshape(-1).astype(np.float32)


def load_grid(source, grid_size, data_dir='data'):
    return image_to_grid(load_image(source, data_dir), grid_size)
