from .texture import RunLengthTextureFeatures, summarize_feature_map
from .texture_definitions import FEATURE_NAMES, RUN_PERCENTAGE_NAME
