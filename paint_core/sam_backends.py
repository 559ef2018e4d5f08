"""
Inference backends for SegmentationEngine.

Every backend exposes the same small surface:
    canvas_size                     square input side (pixels)
    configure_runtime(num_threads)  process-wide setup, called once
    load()                          load encoder + decoder
    encode(canvas_rgb)              (S, S, 3) uint8 -> embedding dict
    decode(embedding, coords, labels, box)
                                    -> (logits[N, h, w], scores[N])
Coordinates are already in canvas space.
"""
import logging

import numpy as np
import onnxruntime
import torch
from mobile_sam import sam_model_registry

from paint_core.config import SegmentationConfig

logger = logging.getLogger(__name__)


class MobileSamBackend:
    """
    MobileSAM through torch. The image encoder is the first stage, the
    prompt encoder + mask decoder the second; one checkpoint holds both.
    """

    def __init__(self, checkpoint_path=None, model_type="vit_t", device=None, model_instance=None,
                 canvas_size=SegmentationConfig.CANVAS_SIZE):
        if device is None:
            self.device = "cuda" if torch.cuda.is_available() else "cpu"
        else:
            self.device = device
        if checkpoint_path is None and model_instance is None:
            raise ValueError("Either checkpoint_path or model_instance must be provided.")
        self.checkpoint_path = checkpoint_path
        self.model_type = model_type
        self.canvas_size = canvas_size
        self._model_instance = model_instance
        self.sam = None

    def configure_runtime(self, num_threads):
        torch.set_num_threads(num_threads)
        torch.set_grad_enabled(False)
        torch.backends.cudnn.benchmark = False

    def load(self):
        if self._model_instance is not None:
            self.sam = self._model_instance
        else:
            logger.info(f"Loading SAM model ({self.model_type}) on {self.device}...")
            self.sam = sam_model_registry[self.model_type](checkpoint=self.checkpoint_path)
        self.sam.to(device=self.device)
        self.sam.eval()

    def encode(self, canvas_rgb):
        with torch.inference_mode():
            x = torch.as_tensor(canvas_rgb, device=self.device)
            x = x.permute(2, 0, 1).contiguous()[None, :, :, :].float()
            # Normalizes with the model's pixel mean/std; canvas is already square
            x = self.sam.preprocess(x)
            image_embed = self.sam.image_encoder(x)
        return {"image_embed": image_embed}

    def decode(self, embedding, coords, labels, box=None):
        with torch.inference_mode():
            points = None
            if len(coords):
                pts = torch.as_tensor(coords, dtype=torch.float, device=self.device)[None, :, :]
                lbl = torch.as_tensor(labels, dtype=torch.int, device=self.device)[None, :]
                points = (pts, lbl)
            boxes = None
            if box is not None:
                boxes = torch.as_tensor(box, dtype=torch.float, device=self.device)[None, :]

            sparse, dense = self.sam.prompt_encoder(points=points, boxes=boxes, masks=None)
            low_res_masks, iou_predictions = self.sam.mask_decoder(
                image_embeddings=embedding["image_embed"],
                image_pe=self.sam.prompt_encoder.get_dense_pe(),
                sparse_prompt_embeddings=sparse,
                dense_prompt_embeddings=dense,
                multimask_output=True,
            )
        return (
            low_res_masks[0].float().cpu().numpy(),
            iou_predictions[0].float().cpu().numpy(),
        )


class OnnxSam2Backend:
    """
    SAM2 exported as an ONNX encoder/decoder pair, run with ONNX Runtime.
    Box prompts are fed to the decoder as two corner points (labels 2, 3).
    """

    EMBEDDING_NAMES = ("high_res_feats_0", "high_res_feats_1", "image_embed")

    def __init__(self, encoder_path, decoder_path, providers=None,
                 canvas_size=SegmentationConfig.CANVAS_SIZE):
        self.encoder_path = str(encoder_path)
        self.decoder_path = str(decoder_path)
        self.providers = providers or ["CPUExecutionProvider"]
        self.canvas_size = canvas_size
        self.num_threads = 0
        self.encoder = None
        self.decoder = None

    def configure_runtime(self, num_threads):
        onnxruntime.set_default_logger_severity(3)  # ERROR only
        self.num_threads = num_threads

    def _session(self, path):
        options = onnxruntime.SessionOptions()
        options.graph_optimization_level = onnxruntime.GraphOptimizationLevel.ORT_ENABLE_ALL
        if self.num_threads:
            options.intra_op_num_threads = self.num_threads
        return onnxruntime.InferenceSession(path, sess_options=options, providers=self.providers)

    def load(self):
        logger.info(f"Loading encoder from: {self.encoder_path}")
        self.encoder = self._session(self.encoder_path)
        logger.info(f"Loading decoder from: {self.decoder_path}")
        self.decoder = self._session(self.decoder_path)

    def encode(self, canvas_rgb):
        tensor = (canvas_rgb.astype(np.float32) / 255.0).transpose(2, 0, 1)[None, :, :, :]
        input_name = self.encoder.get_inputs()[0].name
        outputs = self.encoder.run(None, {input_name: np.ascontiguousarray(tensor)})
        if len(outputs) < len(self.EMBEDDING_NAMES):
            return None
        return dict(zip(self.EMBEDDING_NAMES, outputs))

    def decode(self, embedding, coords, labels, box=None):
        coords = np.asarray(coords, dtype=np.float32).reshape(-1, 2)
        labels = np.asarray(labels, dtype=np.float32).ravel()
        if box is not None:
            coords = np.concatenate([coords, np.asarray(box, dtype=np.float32).reshape(2, 2)])
            labels = np.concatenate([labels, [SegmentationConfig.BOX_TOP_LEFT_LABEL,
                                              SegmentationConfig.BOX_BOTTOM_RIGHT_LABEL]]).astype(np.float32)
        side = self.canvas_size
        feeds = {
            "image_embed": embedding["image_embed"],
            "high_res_feats_0": embedding["high_res_feats_0"],
            "high_res_feats_1": embedding["high_res_feats_1"],
            "point_coords": coords[None, :, :],
            "point_labels": labels[None, :],
            "mask_input": np.zeros((1, 1, 256, 256), dtype=np.float32),
            "has_mask_input": np.zeros(1, dtype=np.float32),
            # Masks come back in canvas space; the engine undoes the letterbox
            "orig_im_size": np.array([side, side], dtype=np.int32),
        }
        masks, scores = self.decoder.run(["masks", "iou_predictions"], feeds)
        return masks[0], scores[0]


def create_backend(name, model_files, device=None):
    """Backend for a catalog entry's backend name."""
    if name == "mobile_sam":
        return MobileSamBackend(checkpoint_path=str(model_files.encoder_path), device=device)
    if name == "onnx_sam2":
        return OnnxSam2Backend(model_files.encoder_path, model_files.decoder_path)
    raise ValueError(f"Unknown segmentation backend: {name!r}")
