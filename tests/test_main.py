import numpy as np
import pandas as pd
import pytest

import main
from rlmap.image import Image
from rlmap.texture import FEATURE_NAMES


@pytest.fixture()
def volume_files(tmp_path, random_volume, random_volume_mask):
    image_path = str(tmp_path / 'image.nii.gz')
    mask_path = str(tmp_path / 'mask.nii.gz')
    random_volume.save_as_nifti(image_path)
    random_volume_mask.save_as_nifti(mask_path)
    return image_path, mask_path


@pytest.mark.unit
def test_parser_defaults():
    args = main.build_parser().parse_args(['in.nii.gz', 'out.nii.gz'])
    assert args.radius == [2]
    assert args.bins == 256
    assert args.offset is None
    assert args.max_distance == np.inf


@pytest.mark.unit
def test_parser_collects_offsets():
    args = main.build_parser().parse_args(['in.nii.gz', 'out.nii.gz', '--offset', '1', '0', '0',
                                           '--offset', '0', '0', '-1'])
    assert args.offset == [[1, 0, 0], [0, 0, -1]]


@pytest.mark.unit
def test_main_writes_feature_map_and_summary(tmp_path, monkeypatch, volume_files, random_volume_mask):
    monkeypatch.chdir(tmp_path)
    image_path, mask_path = volume_files
    output_path = str(tmp_path / 'out' / 'features.nii.gz')
    summary_path = str(tmp_path / 'summary.csv')

    status = main.main([image_path, output_path, '--mask', mask_path, '--radius', '1', '--bins', '6',
                        '--min', '0', '--max', '5', '--threads', '2', '--summary', summary_path])
    assert status == 0

    feature_map = Image()
    feature_map.read_image(output_path)
    assert feature_map.array.shape == random_volume_mask.array.shape + (len(FEATURE_NAMES),)
    assert np.all(feature_map.array[random_volume_mask.array == 0] == 0)

    summary = pd.read_csv(summary_path, index_col='feature')
    assert list(summary.index) == list(FEATURE_NAMES)
    assert (tmp_path / 'logs').is_dir()


@pytest.mark.unit
def test_main_reports_invalid_range(tmp_path, monkeypatch, volume_files):
    monkeypatch.chdir(tmp_path)
    image_path, _ = volume_files
    output_path = str(tmp_path / 'features.nii.gz')
    assert main.main([image_path, output_path, '--min', '5', '--max', '0', '--threads', '1']) == 1
    assert main.main([image_path, output_path, '--min', '5', '--threads', '1']) == 1
    assert not (tmp_path / 'features.nii.gz').exists()


@pytest.mark.unit
def test_main_rejects_mask_with_other_geometry(tmp_path, monkeypatch, volume_files, random_volume_mask):
    monkeypatch.chdir(tmp_path)
    image_path, _ = volume_files
    mask = random_volume_mask.copy()
    mask.spacing = np.array([3.0, 3.0, 3.0])
    mask.origin = (50.0, 50.0, 50.0)
    mask_path = str(tmp_path / 'shifted_mask.nii.gz')
    mask.save_as_nifti(mask_path)
    output_path = str(tmp_path / 'features.nii.gz')

    assert main.main([image_path, output_path, '--mask', mask_path, '--radius', '1', '--threads', '1']) == 1
    assert not (tmp_path / 'features.nii.gz').exists()
