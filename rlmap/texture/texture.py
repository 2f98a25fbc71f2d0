import itertools
import logging
import sys
import warnings
from multiprocessing import cpu_count

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from tqdm import tqdm

from .texture_definitions import FEATURE_NAMES, RUN_PERCENTAGE_NAME, EXCLUDED_BIN, digitize, normalize_offset, \
    normalize_offsets, default_offsets, NeighborhoodWindow, DistanceBinning, fill_run_length_histogram, \
    RunLengthFeatures, FeatureAccumulator, split_region
from ..exceptions import InvalidInputParametersError, DataStructureError, DataStructureWarning
from ..image import Image
from ..toolbox_logic import handle_uncaught_exception, tqdm_joblib

sys.excepthook = handle_uncaught_exception

logger = logging.getLogger(__name__)

DEFAULT_BINS_PER_AXIS = 256


def _is_int(value):
    return isinstance(value, (int, np.integer)) and not isinstance(value, (bool, np.bool_))


class RunLengthTextureFeatures:
    """
    Local grey level run-length texture features.

    For every voxel, run-length matrices of its neighbourhood are built for each offset, reduced to
    the features listed in FEATURE_NAMES and averaged over the offsets. Galloway (1975), Chu et al.
    (1990), Dasarathy and Holder (1991).

    Offsets and radii are given in array-axis order. All parameters are validated when set;
    ``extract_feature_map`` reads them but never changes them.
    """

    def __init__(self,
                 neighborhood_radius=2, offsets=None,
                 number_of_bins_per_axis=DEFAULT_BINS_PER_AXIS,
                 pixel_value_min_max=None, distance_value_min_max=None,
                 inside_pixel_value=1, number_of_distance_bins=None,
                 run_percentage=False, number_of_threads=None, verbose=False):
        self.set_neighborhood_radius(neighborhood_radius)
        if offsets is None:
            self._offsets = None
        else:
            self.set_offsets(offsets)
        self.set_number_of_bins_per_axis(number_of_bins_per_axis)
        if pixel_value_min_max is None:
            self._min = None
            self._max = None
        else:
            self.set_pixel_value_min_max(*pixel_value_min_max)
        if distance_value_min_max is None:
            self.set_distance_value_min_max(0.0, np.inf)
        else:
            self.set_distance_value_min_max(*distance_value_min_max)
        self.set_inside_pixel_value(inside_pixel_value)
        self.set_number_of_distance_bins(number_of_distance_bins)
        self.set_number_of_threads(cpu_count() if number_of_threads is None else number_of_threads)
        self.run_percentage = bool(run_percentage)
        self.verbose = bool(verbose)

    # Configuration

    def set_neighborhood_radius(self, radius):
        if _is_int(radius):
            if radius < 0:
                raise InvalidInputParametersError(f'Neighborhood radius {radius} must be a non-negative integer.')
            self._neighborhood_radius = int(radius)
            return
        try:
            values = tuple(radius)
        except TypeError:
            raise InvalidInputParametersError(f'Neighborhood radius {radius} must be an integer '
                                              f'or a sequence of integers.')
        if not values or not all(_is_int(v) and v >= 0 for v in values):
            raise InvalidInputParametersError(f'Neighborhood radius {radius} must contain non-negative integers.')
        self._neighborhood_radius = tuple(int(v) for v in values)

    def set_offset(self, offset):
        """Replaces the current offsets with a single one."""
        self._offsets = (normalize_offset(offset),)

    def set_offsets(self, offsets):
        """Replaces the current offsets; opposite directions collapse into one."""
        offsets = normalize_offsets(offsets)
        if len({len(offset) for offset in offsets}) > 1:
            raise InvalidInputParametersError(f'Offsets {offsets} do not share one dimensionality.')
        self._offsets = offsets

    def set_number_of_bins_per_axis(self, number_of_bins):
        if not (_is_int(number_of_bins) and number_of_bins >= 1):
            raise InvalidInputParametersError(f'Number of bins {number_of_bins} must be an integer >= 1.')
        self._number_of_bins_per_axis = int(number_of_bins)

    def set_pixel_value_min_max(self, min_value, max_value):
        if not (_is_int(min_value) and _is_int(max_value)):
            raise InvalidInputParametersError(f'Pixel value range ({min_value}, {max_value}) must be integers.')
        if min_value > max_value:
            raise InvalidInputParametersError(f'Pixel value minimum {min_value} is greater than '
                                              f'maximum {max_value}.')
        self._min = int(min_value)
        self._max = int(max_value)

    def set_distance_value_min_max(self, min_distance, max_distance):
        try:
            min_distance = float(min_distance)
            max_distance = float(max_distance)
        except (TypeError, ValueError):
            raise InvalidInputParametersError(f'Distance range ({min_distance}, {max_distance}) must be numbers.')
        if np.isnan(min_distance) or np.isnan(max_distance):
            raise InvalidInputParametersError('Distance range must not contain NaN.')
        if min_distance > max_distance:
            raise InvalidInputParametersError(f'Distance minimum {min_distance} is greater than '
                                              f'maximum {max_distance}.')
        if np.isfinite(max_distance) and not np.isfinite(min_distance):
            raise InvalidInputParametersError('A finite maximum distance requires a finite minimum distance.')
        self._min_distance = min_distance
        self._max_distance = max_distance

    def set_inside_pixel_value(self, inside_pixel_value):
        if not _is_int(inside_pixel_value):
            raise InvalidInputParametersError(f'Inside pixel value {inside_pixel_value} must be an integer.')
        self._inside_pixel_value = int(inside_pixel_value)

    def set_number_of_distance_bins(self, number_of_distance_bins):
        if number_of_distance_bins is not None and not (_is_int(number_of_distance_bins)
                                                        and number_of_distance_bins >= 1):
            raise InvalidInputParametersError(f'Number of distance bins {number_of_distance_bins} '
                                              f'must be an integer >= 1.')
        self._number_of_distance_bins = number_of_distance_bins

    def set_number_of_threads(self, number_of_threads):
        if not (_is_int(number_of_threads) and number_of_threads >= 1):
            raise InvalidInputParametersError(f'Number of threads {number_of_threads} must be an integer >= 1.')
        self._number_of_threads = int(number_of_threads)

    @property
    def neighborhood_radius(self):
        return self._neighborhood_radius

    @property
    def offsets(self):
        return self._offsets

    @property
    def number_of_bins_per_axis(self):
        return self._number_of_bins_per_axis

    @property
    def pixel_value_min_max(self):
        return self._min, self._max

    @property
    def distance_value_min_max(self):
        return self._min_distance, self._max_distance

    @property
    def inside_pixel_value(self):
        return self._inside_pixel_value

    @property
    def number_of_distance_bins(self):
        return self._number_of_distance_bins

    @property
    def number_of_threads(self):
        return self._number_of_threads

    @property
    def feature_names(self):
        if self.run_percentage:
            return FEATURE_NAMES + (RUN_PERCENTAGE_NAME,)
        return FEATURE_NAMES

    # Validation against the input

    def _radius_for(self, ndim):
        if _is_int(self._neighborhood_radius):
            return np.full(ndim, self._neighborhood_radius, dtype=np.int64)
        if len(self._neighborhood_radius) != ndim:
            raise InvalidInputParametersError(f'Neighborhood radius {self._neighborhood_radius} does not match '
                                              f'the {ndim}D image.')
        return np.asarray(self._neighborhood_radius, dtype=np.int64)

    def _offsets_for(self, ndim):
        if self._offsets is None:
            return default_offsets(ndim)
        return normalize_offsets(self._offsets, ndim)

    def _pixel_range_for(self, dtype):
        if self._min is None:
            info = np.iinfo(dtype)
            return int(info.min), int(info.max)
        return self._min, self._max

    def _distance_bins_for(self, radius):
        if np.isfinite(self._max_distance):
            return self._number_of_distance_bins or self._number_of_bins_per_axis
        if self._number_of_distance_bins is not None:
            logger.debug('Number of distance bins is ignored for an unbounded distance range.')
        return int(np.max(2 * radius + 1)) if radius.size else 1

    @staticmethod
    def _check_image(image):
        if isinstance(image, np.ndarray):
            image = Image(array=image)
        if not isinstance(image, Image) or image.array is None:
            raise DataStructureError('Input image has no array data.')
        array = np.asarray(image.array)
        if not np.issubdtype(array.dtype, np.integer):
            raise DataStructureError(f'Only integer intensities are supported, the image has type {array.dtype}.')
        if array.ndim == 0:
            raise DataStructureError('Input image must have at least one dimension.')
        return image, array

    def _check_mask(self, image, mask):
        if mask is None:
            return None
        if isinstance(mask, np.ndarray):
            mask = Image(array=mask)
        if not isinstance(mask, Image) or mask.array is None:
            raise DataStructureError('Mask has no array data.')
        if not mask.same_geometry(image):
            raise DataStructureError(f'Mask geometry {np.shape(mask.array)} does not match '
                                     f'image geometry {np.shape(image.array)}.')
        inside = np.asarray(mask.array) == self._inside_pixel_value
        if not inside.any():
            warnings.warn(f'Mask has no voxel equal to {self._inside_pixel_value}; '
                          'the feature map will be zero.', DataStructureWarning)
        return inside

    # Computation

    def extract_feature_map(self, image, mask=None):
        """
        Computes the feature map of ``image``.

        Args:
            image (Image or np.ndarray): integer image.
            mask (Image or np.ndarray, optional): features are computed for voxels equal to the
                inside pixel value, and only those voxels take part in the runs.

        Returns:
            Image: vector image with the geometry of ``image``; the last array axis holds the features
            in ``feature_names`` order. Voxels outside the mask hold zeros.
        """
        image, array = self._check_image(image)
        ndim = array.ndim
        radius = self._radius_for(ndim)
        offsets = self._offsets_for(ndim)
        min_value, max_value = self._pixel_range_for(array.dtype)
        inside = self._check_mask(image, mask)

        number_of_bins = self._number_of_bins_per_axis
        number_of_distance_bins = self._distance_bins_for(radius)
        binning = DistanceBinning(self._min_distance, self._max_distance, number_of_distance_bins)
        features = RunLengthFeatures(number_of_bins, number_of_distance_bins)
        spacing = image.array_spacing
        step_distances = [float(np.linalg.norm(np.asarray(offset) * spacing)) for offset in offsets]
        number_of_features = len(self.feature_names)
        run_percentage = self.run_percentage

        logger.info(f'Run-length features: shape {array.shape}, radius {tuple(radius)}, '
                    f'{len(offsets)} offsets, {number_of_bins} grey levels in [{min_value}, {max_value}], '
                    f'{number_of_distance_bins} distance bins in '
                    f'[{self._min_distance}, {self._max_distance}].')

        digitized = digitize(array, min_value, max_value, number_of_bins, inside)
        output = np.zeros(array.shape + (number_of_features,), dtype=np.float64)
        regions = split_region(array.shape, self._number_of_threads)

        def parfor(region):
            histogram = np.zeros((number_of_bins, number_of_distance_bins), dtype=np.uint32)
            accumulator = FeatureAccumulator(number_of_features)
            for index in itertools.product(*(range(s.start, s.stop) for s in region)):
                window = NeighborhoodWindow(index, radius, array.shape, inside)
                if index not in window:
                    continue
                window_values = window.view(digitized)
                number_of_voxels = None
                if run_percentage:
                    number_of_voxels = int(np.count_nonzero(window_values != EXCLUDED_BIN))
                accumulator.reset()
                for offset, step_distance in zip(offsets, step_distances):
                    total = fill_run_length_histogram(histogram, window_values, offset, step_distance, binning)
                    accumulator.add(features.compute(histogram, total, number_of_voxels))
                output[index] = accumulator.average()

        with tqdm_joblib(tqdm(desc='Extracting run-length features', total=len(regions),
                              disable=not self.verbose)):
            Parallel(n_jobs=max(len(regions), 1), backend='threading')(
                delayed(parfor)(region) for region in regions)

        logger.info('Run-length features completed.')

        shape = image.shape if image.shape is not None else tuple(reversed(array.shape))
        return Image(array=output, origin=image.origin, spacing=image.spacing,
                     direction=image.direction, shape=shape)


def summarize_feature_map(feature_map, mask=None, inside_pixel_value=1):
    """
    Per-feature statistics of a feature map inside the mask (all voxels without mask).

    Returns:
        pd.DataFrame: one row per feature with the columns mean, std, min, median and max.
    """
    values = np.asarray(feature_map.array)
    number_of_features = values.shape[-1]
    if number_of_features == len(FEATURE_NAMES):
        names = list(FEATURE_NAMES)
    elif number_of_features == len(FEATURE_NAMES) + 1:
        names = list(FEATURE_NAMES) + [RUN_PERCENTAGE_NAME]
    else:
        raise DataStructureError(f'Feature map with {number_of_features} components is not a run-length map.')

    values = values.reshape(-1, number_of_features)
    if mask is not None:
        mask_array = np.asarray(mask.array if isinstance(mask, Image) else mask)
        if mask_array.size != values.shape[0]:
            raise DataStructureError(f'Mask size {mask_array.size} does not match the feature map.')
        values = values[mask_array.reshape(-1) == inside_pixel_value]

    df = pd.DataFrame(values, columns=names)
    summary = pd.DataFrame({
        'mean': df.mean(),
        'std': df.std(ddof=0),
        'min': df.min(),
        'median': df.median(),
        'max': df.max(),
    })
    summary.index.name = 'feature'
    return summary
