import itertools

import numpy as np

from ..exceptions import InvalidInputParametersError

EXCLUDED_BIN = -1

FEATURE_NAMES = (
    'rlm_sre', 'rlm_lre', 'rlm_glnu', 'rlm_rlnu', 'rlm_lgre', 'rlm_hgre',
    'rlm_srlge', 'rlm_srhge', 'rlm_lrlge', 'rlm_lrhge'
)
RUN_PERCENTAGE_NAME = 'rlm_r_perc'


def digitize(array, min_value, max_value, number_of_bins, inside=None):
    """
    Maps intensities to grey level bins.

    Parameters:
      array: integer numpy array.
      min_value, max_value: inclusive intensity range.
      number_of_bins: number of grey level bins.
      inside: optional boolean array; voxels where it is False are excluded.

    Returns:
      int64 array of the input shape holding bin indices in [0, number_of_bins - 1],
      or EXCLUDED_BIN for voxels outside [min_value, max_value] or outside the mask.
    """
    array = np.asarray(array)
    min_value, max_value, number_of_bins = int(min_value), int(max_value), int(number_of_bins)
    span = max_value - min_value

    # Exact integer arithmetic; Python ints when int64 could overflow.
    int64 = np.iinfo(np.int64)
    fits_int64 = (array.dtype != np.uint64 and int64.min <= min_value and max_value <= int64.max
                  and span * number_of_bins <= int64.max)
    values = array.astype(np.int64 if fits_int64 else object)
    digitized = np.full(values.shape, EXCLUDED_BIN, dtype=np.int64)

    in_range = (values >= min_value) & (values <= max_value)
    if inside is not None:
        in_range &= np.asarray(inside, dtype=bool)

    if span > 0:
        bins = (values[in_range] - min_value) * number_of_bins // span
        bins = np.minimum(bins, number_of_bins - 1).astype(np.int64)
    else:
        bins = 0
    digitized[in_range] = bins

    return digitized


def normalize_offset(offset, ndim=None):
    """
    Returns the canonical form of a direction: the highest-axis non-zero component is made positive,
    so that a direction and its opposite describe the same runs.
    """
    offset_array = np.asarray(offset)
    if offset_array.ndim != 1 or offset_array.size == 0:
        raise InvalidInputParametersError(f'Offset {offset} is not a one-dimensional integer vector.')
    if not np.issubdtype(offset_array.dtype, np.integer):
        if not (np.issubdtype(offset_array.dtype, np.floating) and np.all(np.mod(offset_array, 1) == 0)):
            raise InvalidInputParametersError(f'Offset {offset} must contain integers only.')
        offset_array = offset_array.astype(np.int64)
    if ndim is not None and offset_array.size != ndim:
        raise InvalidInputParametersError(f'Offset {tuple(offset_array)} has {offset_array.size} components, '
                                          f'the image has {ndim} dimensions.')

    non_zero = np.flatnonzero(offset_array)
    if non_zero.size == 0:
        raise InvalidInputParametersError(f'Offset {tuple(offset_array)} must not be the zero vector.')
    if offset_array[non_zero[-1]] < 0:
        offset_array = -offset_array

    return tuple(int(v) for v in offset_array)


def normalize_offsets(offsets, ndim=None):
    normalized = []
    for offset in offsets:
        canonical = normalize_offset(offset, ndim)
        if canonical not in normalized:
            normalized.append(canonical)
    if not normalized:
        raise InvalidInputParametersError('At least one offset is required.')
    return tuple(normalized)


def default_offsets(ndim):
    """Half of the radius-1 neighbourhood: 1 direction in 1D, 4 in 2D, 13 in 3D."""
    neighbours = list(itertools.product((-1, 0, 1), repeat=ndim))
    return normalize_offsets(neighbours[:len(neighbours) // 2], ndim)


class NeighborhoodWindow:
    """
    Box of half-width ``radius`` around ``index``, clipped to the image and restricted to ``inside``.

    ``view`` returns the box of a digitized image, in which masked-out voxels already carry
    EXCLUDED_BIN (see ``digitize``); membership tests apply the mask directly.
    """

    def __init__(self, index, radius, shape, inside=None):
        index = np.asarray(index, dtype=np.int64)
        radius = np.asarray(radius, dtype=np.int64)
        self.lower = np.maximum(index - radius, 0)
        self.upper = np.minimum(index + radius, np.asarray(shape, dtype=np.int64) - 1)
        self.inside = inside

    @property
    def slices(self):
        return tuple(slice(int(low), int(up) + 1) for low, up in zip(self.lower, self.upper))

    @property
    def extent(self):
        return tuple(int(v) for v in np.maximum(self.upper - self.lower + 1, 0))

    def view(self, array):
        return array[self.slices]

    def __contains__(self, index):
        index = np.asarray(index)
        if np.any(index < self.lower) or np.any(index > self.upper):
            return False
        return self.inside is None or bool(self.inside[tuple(index)])


class DistanceBinning:
    """
    Maps run lengths to distance bins.

    With a finite maximum distance the range [min_distance, max_distance] is split into
    ``number_of_bins`` equal bins. With an infinite maximum every pixel step has its own bin,
    a run of L pixels falls into bin L - 1.
    """

    def __init__(self, min_distance, max_distance, number_of_bins):
        self.min_distance = float(min_distance)
        self.max_distance = float(max_distance)
        self.number_of_bins = int(number_of_bins)
        self.unit_steps = not np.isfinite(self.max_distance)

    def bin_indices(self, run_lengths, step_distance):
        """Distance bin of every run, -1 for runs outside the distance range."""
        distances = run_lengths * step_distance
        accepted = (distances >= self.min_distance) & (distances <= self.max_distance)

        if self.unit_steps:
            indices = run_lengths - 1
        else:
            width = (self.max_distance - self.min_distance) / self.number_of_bins
            if width > 0:
                indices = np.floor((distances - self.min_distance) / width).astype(np.int64)
                indices = np.minimum(indices, self.number_of_bins - 1)
            else:
                indices = np.zeros_like(run_lengths)

        return np.where(accepted, indices, -1)


def _shifted(values, shift):
    """values[p + shift] for every position p of the window, EXCLUDED_BIN where p + shift leaves it."""
    out = np.full(values.shape, EXCLUDED_BIN, dtype=values.dtype)
    source, target = [], []
    for step, length in zip(shift, values.shape):
        step = int(step)
        if abs(step) >= length:
            return out
        if step >= 0:
            target.append(slice(0, length - step))
            source.append(slice(step, length))
        else:
            target.append(slice(-step, length))
            source.append(slice(0, length + step))
    out[tuple(target)] = values[tuple(source)]
    return out


def fill_run_length_histogram(histogram, window_values, offset, step_distance, distance_binning):
    """
    Fills ``histogram`` (grey level x distance bin) with the runs of ``window_values`` along ``offset``.

    Parameters:
      histogram: 2D integer scratch array, overwritten.
      window_values: digitized window, EXCLUDED_BIN marks voxels that take no part in runs.
      offset: canonical direction.
      step_distance: physical length of one step along ``offset``.
      distance_binning: DistanceBinning instance.

    Returns:
      Number of runs added to the histogram.
    """
    histogram.fill(0)
    offset = np.asarray(offset, dtype=np.int64)

    # A run starts where the previous voxel along the offset cannot continue it.
    valid = window_values != EXCLUDED_BIN
    starts = valid & (_shifted(window_values, -offset) != window_values)
    if not starts.any():
        return 0

    lengths = starts.astype(np.int64)
    running = starts.copy()
    step = 1
    while running.any():
        running &= _shifted(window_values, step * offset) == window_values
        lengths += running
        step += 1

    run_bins = window_values[starts]
    distance_bins = distance_binning.bin_indices(lengths[starts], step_distance)
    accepted = distance_bins >= 0
    np.add.at(histogram, (run_bins[accepted], distance_bins[accepted]), 1)

    return int(np.count_nonzero(accepted))


class RunLengthFeatures:
    """Run-length features of one histogram; grey level i and distance bin j are counted from 1."""

    def __init__(self, number_of_bins, number_of_distance_bins):
        i, j = np.indices((number_of_bins, number_of_distance_bins), dtype=np.float64)
        self.i_sq = (i + 1) ** 2
        self.j_sq = (j + 1) ** 2

    def calc_short_emphasis(self, m, n_s):
        return np.sum(m / self.j_sq) / n_s

    def calc_long_emphasis(self, m, n_s):
        return np.sum(m * self.j_sq) / n_s

    def calc_non_uniformity(self, m, n_s):
        return np.sum(np.sum(m, axis=1) ** 2) / n_s

    def calc_length_non_uniformity(self, m, n_s):
        return np.sum(np.sum(m, axis=0) ** 2) / n_s

    def calc_low_gr_lvl_emphasis(self, m, n_s):
        return np.sum(m / self.i_sq) / n_s

    def calc_high_gr_lvl_emphasis(self, m, n_s):
        return np.sum(m * self.i_sq) / n_s

    def calc_short_low_gr_lvl_emphasis(self, m, n_s):
        return np.sum(m / (self.i_sq * self.j_sq)) / n_s

    def calc_short_high_gr_lvl_emphasis(self, m, n_s):
        return np.sum(m * self.i_sq / self.j_sq) / n_s

    def calc_long_low_gr_lvl_emphasis(self, m, n_s):
        return np.sum(m * self.j_sq / self.i_sq) / n_s

    def calc_long_high_gr_lvl_emphasis(self, m, n_s):
        return np.sum(m * self.i_sq * self.j_sq) / n_s

    def compute(self, histogram, total_number_of_runs, number_of_voxels=None):
        """
        Feature vector in FEATURE_NAMES order, followed by the run percentage when
        ``number_of_voxels`` is given. No runs gives the zero vector.
        """
        features = np.zeros(len(FEATURE_NAMES) + (number_of_voxels is not None), dtype=np.float64)
        if total_number_of_runs == 0:
            return features

        m = histogram.astype(np.float64)
        n_s = float(total_number_of_runs)
        features[:len(FEATURE_NAMES)] = (
            self.calc_short_emphasis(m, n_s),
            self.calc_long_emphasis(m, n_s),
            self.calc_non_uniformity(m, n_s),
            self.calc_length_non_uniformity(m, n_s),
            self.calc_low_gr_lvl_emphasis(m, n_s),
            self.calc_high_gr_lvl_emphasis(m, n_s),
            self.calc_short_low_gr_lvl_emphasis(m, n_s),
            self.calc_short_high_gr_lvl_emphasis(m, n_s),
            self.calc_long_low_gr_lvl_emphasis(m, n_s),
            self.calc_long_high_gr_lvl_emphasis(m, n_s),
        )
        if number_of_voxels:
            features[-1] = n_s / number_of_voxels

        return features


class FeatureAccumulator:
    """Averages feature vectors over directions."""

    def __init__(self, number_of_features):
        self.total = np.zeros(number_of_features, dtype=np.float64)
        self.number_of_directions = 0

    def reset(self):
        self.total.fill(0)
        self.number_of_directions = 0

    def add(self, features):
        self.total += features
        self.number_of_directions += 1

    def average(self):
        if self.number_of_directions == 0:
            return self.total.copy()
        return self.total / self.number_of_directions


def split_region(shape, number_of_regions):
    """Disjoint blocks along the first axis that together cover ``shape``."""
    if len(shape) == 0 or shape[0] == 0:
        return []
    rows = np.array_split(np.arange(shape[0]), min(number_of_regions, shape[0]))
    rest = tuple(slice(0, int(size)) for size in shape[1:])
    return [(slice(int(block[0]), int(block[-1]) + 1),) + rest for block in rows]
