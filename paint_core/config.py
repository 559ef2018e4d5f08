"""
Configuration constants for the paint visualizer core.
Tunable parameters and magic numbers live here, grouped by concern.
"""
import os


class ModelConfig:
    """Model supply and runtime settings."""

    # Where downloaded encoder/decoder files are cached
    MODEL_DIR = os.environ.get("PAINT_MODEL_DIR", "weights")

    # Catalog key of the segmentation model loaded by default
    DEFAULT_MODEL = os.environ.get("PAINT_SAM_MODEL", "mobile_sam")

    # Numeric thread count, applied once per process
    NUM_THREADS = int(os.environ.get("PAINT_NUM_THREADS", "4"))

    DOWNLOAD_CHUNK_SIZE = 512 * 1024
    DOWNLOAD_TIMEOUT = 60


class SegmentationConfig:
    """Configuration for promptable (SAM-style) segmentation."""

    # Side of the square letterbox canvas the encoder consumes
    CANVAS_SIZE = 1024

    # Decoder output is a raw logit; foreground is anything above this
    MASK_THRESHOLD = 0.0

    # Number of ranked candidates returned for ambiguous prompts
    DEFAULT_TOP_K = 3

    # Point label convention shared by SAM decoders
    NEGATIVE_LABEL = 0
    POSITIVE_LABEL = 1
    BOX_TOP_LEFT_LABEL = 2
    BOX_BOTTOM_RIGHT_LABEL = 3


class RecolorConfig:
    """Configuration for illumination-preserving recoloring."""

    DEFAULT_ALGORITHM = "retinex"

    # Box-blur radius (px) used to estimate the low-frequency shade field.
    # Too large biases recovered reflectance toward black, too small leaves
    # texture inside the shade.
    RETINEX_BLUR_RADIUS = 40

    # Floor applied before taking logs of linear values
    LOG_EPSILON = 1e-4

    # Lightness gain cap for very dark source regions
    MAX_LIGHTNESS_SCALE = 5.0

    # Chroma damping: clamp(pixel_gray / mean_gray, MIN, MAX)
    CHROMA_SCALE_MIN = 0.4
    CHROMA_SCALE_MAX = 1.0

    LUMINANCE_WEIGHTS = (0.2126, 0.7152, 0.0722)


class HistoryConfig:
    """Undo/redo settings."""

    MAX_ENTRIES = 20


class CanvasConfig:
    """Interactive canvas settings."""

    # Pointer must stay still this long before a hover preview fires
    HOVER_DEBOUNCE_S = 0.15

    # Hover highlight is white blended at this opacity
    HOVER_HIGHLIGHT_ALPHA = 0.5
