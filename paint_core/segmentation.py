import enum
import logging
import threading

import cv2
import numpy as np

from paint_core.config import ModelConfig, SegmentationConfig
from paint_core.errors import InferenceError, InitializationError, PreconditionError
from paint_core.image_ops import filter_largest_component

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Process-wide runtime setup (thread counts, kernels) must run exactly once,
# even when several engines are constructed concurrently.
_RUNTIME_LOCK = threading.Lock()
_RUNTIME_CONFIGURED = False


def configure_runtime(backend, num_threads=None):
    """
    Apply the backend's process-wide runtime configuration once.
    Returns True if this call did the configuration.
    """
    global _RUNTIME_CONFIGURED
    with _RUNTIME_LOCK:
        if _RUNTIME_CONFIGURED:
            return False
        threads = num_threads or ModelConfig.NUM_THREADS
        logger.info(f"Configuring inference runtime ({threads} threads)...")
        backend.configure_runtime(threads)
        _RUNTIME_CONFIGURED = True
        return True


class EngineState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    EMBEDDING = "embedding"
    DECODING = "decoding"
    FAILED = "failed"


class Letterbox:
    """Uniform scale + centered offset mapping an image onto the square canvas."""

    def __init__(self, width, height, canvas_size=SegmentationConfig.CANVAS_SIZE):
        self.width = width
        self.height = height
        self.canvas_size = canvas_size
        self.scale = min(canvas_size / width, canvas_size / height)
        self.scaled_width = max(1, int(round(width * self.scale)))
        self.scaled_height = max(1, int(round(height * self.scale)))
        self.offset_x = (canvas_size - self.scaled_width) // 2
        self.offset_y = (canvas_size - self.scaled_height) // 2

    def apply(self, image_rgb):
        """Resize preserving aspect ratio, center, and pad with black."""
        canvas = np.zeros((self.canvas_size, self.canvas_size, 3), dtype=np.uint8)
        resized = cv2.resize(
            np.ascontiguousarray(image_rgb[..., :3]),
            (self.scaled_width, self.scaled_height),
            interpolation=cv2.INTER_AREA if self.scale < 1 else cv2.INTER_LINEAR,
        )
        canvas[self.offset_y:self.offset_y + self.scaled_height,
               self.offset_x:self.offset_x + self.scaled_width] = resized
        return canvas

    def clamp_point(self, x, y):
        x = min(max(float(x), 0.0), self.width - 1)
        y = min(max(float(y), 0.0), self.height - 1)
        return x, y

    def to_canvas(self, x, y):
        x, y = self.clamp_point(x, y)
        return x * self.scale + self.offset_x, y * self.scale + self.offset_y

    def crop_to_image(self, canvas_mask):
        """Undo the letterbox: crop the content region, nearest-resize back."""
        content = canvas_mask[self.offset_y:self.offset_y + self.scaled_height,
                              self.offset_x:self.offset_x + self.scaled_width]
        resized = cv2.resize(content.astype(np.uint8), (self.width, self.height),
                             interpolation=cv2.INTER_NEAREST)
        return resized > 0


class SegmentationEngine:
    """
    Promptable point/box segmentation over a two-stage encoder/decoder model.

    The backend does the raw inference; this class owns the state machine,
    the letterbox geometry, and mask post-processing.
    """

    def __init__(self, backend):
        self.backend = backend
        self.state = EngineState.UNINITIALIZED
        self.last_error = None
        self._embedding = None
        self._letterbox = None
        self._image_rgb = None
        # Inference is not re-entrant; hover and click threads share this
        self._lock = threading.Lock()

    @classmethod
    def from_model_files(cls, model_files, backend_name="mobile_sam", device=None):
        """Build an engine for files returned by ModelStore.get_model_files()."""
        from paint_core import sam_backends

        backend = sam_backends.create_backend(backend_name, model_files, device=device)
        return cls(backend)

    @property
    def is_ready(self):
        return self.state == EngineState.READY

    @property
    def has_embedding(self):
        return self._embedding is not None

    def initialize(self):
        """
        Load the encoder and decoder. A failure leaves the engine in the
        FAILED state and every later call raises InitializationError.
        """
        if self.state == EngineState.READY:
            return
        self.state = EngineState.INITIALIZING
        try:
            configure_runtime(self.backend)
            logger.info("Loading segmentation encoder/decoder...")
            self.backend.load()
        except Exception as e:
            self.state = EngineState.FAILED
            self.last_error = e
            logger.error(f"Failed to initialize segmentation engine: {e}")
            raise InitializationError(f"Failed to initialize segmentation engine: {e}") from e
        self.state = EngineState.READY
        logger.info("Segmentation engine ready.")

    def _require_ready(self):
        if self.state == EngineState.FAILED:
            raise InitializationError(f"Segmentation engine failed to initialize: {self.last_error}")
        if self.state in (EngineState.UNINITIALIZED, EngineState.INITIALIZING):
            raise PreconditionError("Segmentation engine not initialized. Call initialize() first.")

    def generate_embedding(self, image_rgb):
        """
        Letterbox the image onto the square canvas, run the encoder, and cache
        the embedding with the geometry used. Re-embedding an identical image
        is skipped.
        Args:
            image_rgb: NumPy array (H, W, 3|4) uint8 in RGB order.
        """
        self._require_ready()
        if self._embedding is not None and self._image_rgb is not None:
            if image_rgb.shape == self._image_rgb.shape and np.array_equal(image_rgb, self._image_rgb):
                logger.info("Image already embedded. Skipping encoder.")
                return

        h, w = image_rgb.shape[:2]
        letterbox = Letterbox(w, h, self.backend.canvas_size)
        with self._lock:
            self.state = EngineState.EMBEDDING
            # Stale embeddings must never answer for a new image
            self._embedding = None
            self._image_rgb = None
            try:
                logger.info("Computing image embeddings...")
                embedding = self.backend.encode(letterbox.apply(image_rgb))
            except Exception as e:
                logger.error(f"Encoder failed: {e}")
                raise InferenceError("encoder", str(e)) from e
            finally:
                self.state = EngineState.READY
            if not embedding:
                raise InferenceError("encoder", "no embedding produced")
            self._embedding = embedding
            self._letterbox = letterbox
            self._image_rgb = np.array(image_rgb, copy=True)
        logger.info("Embeddings computed.")

    def _require_embedding(self):
        self._require_ready()
        if self._embedding is None:
            raise PreconditionError("No image embedding available. Call generate_embedding() first.")

    def _decode(self, positive_points, negative_points, box=None):
        lb = self._letterbox
        coords = []
        labels = []
        for x, y in positive_points:
            coords.append(lb.to_canvas(x, y))
            labels.append(SegmentationConfig.POSITIVE_LABEL)
        for x, y in negative_points:
            coords.append(lb.to_canvas(x, y))
            labels.append(SegmentationConfig.NEGATIVE_LABEL)
        canvas_box = None
        if box is not None:
            x0, y0, x1, y1 = box
            cx0, cy0 = lb.to_canvas(min(x0, x1), min(y0, y1))
            cx1, cy1 = lb.to_canvas(max(x0, x1), max(y0, y1))
            canvas_box = np.array([cx0, cy0, cx1, cy1], dtype=np.float32)
        if not coords and canvas_box is None:
            raise ValueError("At least one point or a box prompt is required.")

        coords = np.array(coords, dtype=np.float32).reshape(-1, 2)
        labels = np.array(labels, dtype=np.float32)

        with self._lock:
            self.state = EngineState.DECODING
            try:
                logits, scores = self.backend.decode(self._embedding, coords, labels, canvas_box)
            except Exception as e:
                logger.error(f"Decoder failed: {e}")
                raise InferenceError("decoder", str(e)) from e
            finally:
                self.state = EngineState.READY

        if logits is None or scores is None:
            raise InferenceError("decoder", "missing masks or quality scores")
        logits = np.asarray(logits, dtype=np.float32)
        scores = np.asarray(scores, dtype=np.float32).ravel()
        if logits.ndim == 4:
            logits = logits[0]
        if logits.ndim != 3 or logits.shape[0] == 0 or logits.shape[0] != scores.shape[0]:
            raise InferenceError("decoder", f"unexpected output shapes {logits.shape} / {scores.shape}")
        return logits, scores

    def _postprocess(self, logits):
        """Upsample to the canvas, threshold, undo the letterbox, denoise."""
        side = self._letterbox.canvas_size
        if logits.shape != (side, side):
            logits = cv2.resize(logits, (side, side), interpolation=cv2.INTER_LINEAR)
        canvas_mask = logits > SegmentationConfig.MASK_THRESHOLD
        mask = self._letterbox.crop_to_image(canvas_mask)
        return filter_largest_component(mask)

    def generate_mask(self, point):
        """
        Single positive point -> the highest-scoring mask in original image
        coordinates, reduced to its largest connected component.
        Args:
            point: (x, y) in original image pixels.
        """
        self._require_embedding()
        logits, scores = self._decode([point], [])
        best_idx = int(np.argmax(scores))
        logger.info(f"Selected mask {best_idx} (score {scores[best_idx]:.3f})")
        return self._postprocess(logits[best_idx])

    def generate_masks(self, positive_points=(), negative_points=(), top_k=None, box=None):
        """
        Multi-point (and optional box) prompt -> up to top_k ranked candidate
        masks, each filtered to its largest component.
        """
        self._require_embedding()
        top_k = SegmentationConfig.DEFAULT_TOP_K if top_k is None else int(top_k)
        if top_k < 1:
            raise ValueError("top_k must be at least 1")
        logits, scores = self._decode(list(positive_points), list(negative_points), box)
        order = np.argsort(-scores, kind="stable")[:top_k]
        return [self._postprocess(logits[i]) for i in order]

    def clear_embedding(self):
        self._embedding = None
        self._letterbox = None
        self._image_rgb = None
