import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

import requests

from paint_core.config import ModelConfig
from paint_core.errors import ModelDownloadError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelInfo:
    name: str
    key: str
    encoder_url: str
    decoder_url: str
    backend: str


@dataclass(frozen=True)
class ModelFiles:
    encoder_path: Path
    decoder_path: Path


AVAILABLE_MODELS = {
    "mobile_sam": ModelInfo(
        name="MobileSAM",
        key="mobile_sam",
        # One checkpoint carries both the image encoder and the mask decoder
        encoder_url="https://github.com/ChaoningZhang/MobileSAM/raw/master/weights/mobile_sam.pt",
        decoder_url="https://github.com/ChaoningZhang/MobileSAM/raw/master/weights/mobile_sam.pt",
        backend="mobile_sam",
    ),
    "sam2_tiny": ModelInfo(
        name="SAM2 Tiny",
        key="sam2_tiny",
        encoder_url="https://huggingface.co/g-ronimo/sam2-tiny/resolve/main/sam2_hiera_tiny_encoder.with_runtime_opt.ort",
        decoder_url="https://huggingface.co/g-ronimo/sam2-tiny/resolve/main/sam2_hiera_tiny_decoder.onnx",
        backend="onnx_sam2",
    ),
    "sam2_base": ModelInfo(
        name="SAM2 Base",
        key="sam2_base",
        encoder_url="https://huggingface.co/g-ronimo/sam2-base/resolve/main/sam2_hiera_base_encoder.with_runtime_opt.ort",
        decoder_url="https://huggingface.co/g-ronimo/sam2-base/resolve/main/sam2_hiera_base_decoder.onnx",
        backend="onnx_sam2",
    ),
}


def _suffix(url):
    return Path(urlparse(url).path).suffix


class ModelStore:
    """
    Supplies encoder/decoder files for a catalog entry, downloading them
    into a local cache on first use.
    """

    def __init__(self, cache_dir=None, session=None):
        self.cache_dir = Path(cache_dir or ModelConfig.MODEL_DIR)
        self.http = session or requests

    def get_model_info(self, key):
        try:
            return AVAILABLE_MODELS[key]
        except KeyError:
            raise ValueError(f"Unknown model: {key!r}. Choose from {sorted(AVAILABLE_MODELS)}") from None

    def get_model_files(self, key, on_status=None):
        info = self.get_model_info(key)
        update_status = on_status or (lambda msg: None)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

        if info.encoder_url == info.decoder_url:
            path = self._get_cached(info.encoder_url, f"{info.key}{_suffix(info.encoder_url)}", update_status)
            return ModelFiles(encoder_path=path, decoder_path=path)

        encoder = self._get_cached(info.encoder_url, f"{info.key}-encoder{_suffix(info.encoder_url)}", update_status)
        decoder = self._get_cached(info.decoder_url, f"{info.key}-decoder{_suffix(info.decoder_url)}", update_status)
        return ModelFiles(encoder_path=encoder, decoder_path=decoder)

    def _get_cached(self, url, filename, update_status):
        path = self.cache_dir / filename
        if path.exists() and path.stat().st_size > 0:
            update_status(f"Using cached model: {filename}")
            logger.info(f"Using cached model: {path}")
            return path

        update_status(f"Downloading model {filename}...")
        logger.info(f"Downloading {url} -> {path}")
        tmp_path = path.with_name(path.name + ".part")
        try:
            response = self.http.get(url, stream=True, timeout=ModelConfig.DOWNLOAD_TIMEOUT)
            response.raise_for_status()
            total_size = int(response.headers.get('content-length', 0))
            downloaded = 0
            with open(tmp_path, "wb") as f:
                for chunk in response.iter_content(chunk_size=ModelConfig.DOWNLOAD_CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
                        downloaded += len(chunk)
            if downloaded == 0:
                raise ModelDownloadError(f"Downloaded model {filename} is empty")
            if total_size and downloaded != total_size:
                raise ModelDownloadError(
                    f"Download incomplete for {filename}: {downloaded} of {total_size} bytes"
                )
            os.replace(tmp_path, path)
        except requests.RequestException as e:
            self._discard(tmp_path)
            raise ModelDownloadError(f"Failed to download model {filename}: {e}") from e
        except Exception:
            self._discard(tmp_path)
            raise

        update_status(f"Successfully downloaded and cached: {filename}")
        return path

    @staticmethod
    def _discard(path):
        if path.exists():
            path.unlink()
