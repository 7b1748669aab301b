"""Shared test fixtures."""

import os
import shutil
import tempfile

import numpy as np
import pytest
from PIL import Image

from PhotonicRing.config import GeneratorConfig


@pytest.fixture
def tmp_dir():
    d = tempfile.mkdtemp()
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def default_config():
    return GeneratorConfig()


@pytest.fixture
def albedo_png(tmp_dir):
    """Write a random 32x24 RGB albedo and return its path."""
    path = os.path.join(tmp_dir, "rock.png")
    arr = np.random.default_rng(0).integers(0, 256, size=(24, 32, 3), dtype=np.uint8)
    Image.fromarray(arr).save(path)
    return path
