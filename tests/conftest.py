import numpy as np
import pytest

from rlmap.image import Image


@pytest.fixture()
def stripes_image():
    """
    8x8 image of vertical stripes two voxels wide, 1.0 x 2.0 mm spacing (x, y).
    """
    columns = np.array([0, 0, 3, 3, 0, 0, 3, 3], dtype=np.int16)
    array = np.tile(columns, (8, 1))
    return Image(array=array, origin=(0.0, 0.0), spacing=np.array([1.0, 2.0]),
                 direction=(1.0, 0.0, 0.0, 1.0), shape=(8, 8))


@pytest.fixture()
def random_volume():
    """
    Small random 3D volume with anisotropic spacing.
    """
    rng = np.random.default_rng(2016)
    array = rng.integers(0, 6, size=(6, 5, 7), dtype=np.int32)
    return Image(array=array, origin=(0.0, 0.0, 0.0), spacing=np.array([0.8, 0.8, 2.5]),
                 direction=(1.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0), shape=(7, 5, 6))


@pytest.fixture()
def random_volume_mask(random_volume):
    mask = np.zeros(random_volume.array.shape, dtype=np.uint8)
    mask[1:5, 1:4, 2:6] = 1
    return Image(array=mask, origin=random_volume.origin, spacing=random_volume.spacing,
                 direction=random_volume.direction, shape=random_volume.shape)
