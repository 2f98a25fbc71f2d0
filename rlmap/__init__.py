from .image import Image
from .texture import RunLengthTextureFeatures, summarize_feature_map, FEATURE_NAMES, RUN_PERCENTAGE_NAME

__version__ = '26.10'
