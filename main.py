import argparse
import logging
import sys
from datetime import datetime

import numpy as np

from rlmap.exceptions import InvalidInputParametersError, DataStructureError
from rlmap.image import Image
from rlmap.texture import RunLengthTextureFeatures, summarize_feature_map
from rlmap.toolbox_logic import get_logger, close_all_loggers

logging.captureWarnings(True)


def build_parser():
    ap = argparse.ArgumentParser(description='Compute local grey level run-length feature maps.')
    ap.add_argument('image', help='Input image (any format readable by SimpleITK, integer pixel type).')
    ap.add_argument('output', help='Output vector image.')
    ap.add_argument('--mask', help='Mask image with the geometry of the input image.')
    ap.add_argument('--inside-value', type=int, default=1, help='Mask value marking the region of interest.')
    ap.add_argument('--radius', type=int, nargs='+', default=[2],
                    help='Neighbourhood radius, one value or one per array axis.')
    ap.add_argument('--bins', type=int, default=256, help='Number of grey level bins.')
    ap.add_argument('--min', dest='min_value', type=int, help='Lowest intensity taken into account.')
    ap.add_argument('--max', dest='max_value', type=int, help='Highest intensity taken into account.')
    ap.add_argument('--min-distance', type=float, default=0.0, help='Shortest accepted run length (mm).')
    ap.add_argument('--max-distance', type=float, default=np.inf, help='Longest accepted run length (mm).')
    ap.add_argument('--distance-bins', type=int,
                    help='Number of distance bins for a bounded distance range.')
    ap.add_argument('--offset', type=int, nargs='+', action='append',
                    help='Direction in array-axis order; repeat for several directions.')
    ap.add_argument('--threads', type=int, help='Number of worker threads (default: all CPUs).')
    ap.add_argument('--run-percentage', action='store_true', help='Append the run percentage component.')
    ap.add_argument('--summary', help='CSV file for per-feature statistics inside the mask.')
    ap.add_argument('--verbose', action='store_true', help='Show a progress bar.')
    return ap


def resolve_pixel_range(args):
    if args.min_value is None and args.max_value is None:
        return None
    if args.min_value is None or args.max_value is None:
        raise InvalidInputParametersError('Both --min and --max are required to set the intensity range.')
    return args.min_value, args.max_value


def run(args):
    logger = logging.getLogger()

    image = Image()
    image.read_image(args.image)
    logger.info(f'Image {args.image} loaded, size {image.shape}, spacing {tuple(image.spacing)}.')

    mask = None
    if args.mask:
        mask = Image()
        mask.read_mask(image, args.mask)
        logger.info(f'Mask {args.mask} loaded.')

    radius = args.radius[0] if len(args.radius) == 1 else tuple(args.radius)
    texture = RunLengthTextureFeatures(
        neighborhood_radius=radius,
        offsets=args.offset,
        number_of_bins_per_axis=args.bins,
        pixel_value_min_max=resolve_pixel_range(args),
        distance_value_min_max=(args.min_distance, args.max_distance),
        inside_pixel_value=args.inside_value,
        number_of_distance_bins=args.distance_bins,
        run_percentage=args.run_percentage,
        number_of_threads=args.threads,
        verbose=args.verbose,
    )

    feature_map = texture.extract_feature_map(image, mask)
    feature_map.save(args.output)
    logger.info(f'Feature map saved to {args.output}.')

    if args.summary:
        summary = summarize_feature_map(feature_map, mask, args.inside_value)
        summary.to_csv(args.summary)
        logger.info(f'Feature summary saved to {args.summary}.')

    return feature_map


def main(argv=None):
    args = build_parser().parse_args(argv)

    close_all_loggers()
    logger_date_time = datetime.now().strftime("%Y-%m-%d_%H%M%S")
    logger = get_logger(logger_date_time + '_RunLength')
    logger.info('Run-length feature map started')

    try:
        run(args)
    except (InvalidInputParametersError, DataStructureError) as e:
        logger.error(e)
        return 1
    finally:
        logger.info('Run-length feature map finished!')
        close_all_loggers()

    return 0


if __name__ == '__main__':
    sys.exit(main())
