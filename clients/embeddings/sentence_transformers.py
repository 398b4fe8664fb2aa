"""
All-MiniLM-L6-v2 embedding provider.

ONNX-runtime inference of the 384-dimensional sentence-transformers MiniLM
model. Used to embed utterances at dispatch time and catalog descriptions when
computing namespace and tool centroids; both sides must use the same model.
"""
import logging
import os
import threading
from typing import List, Optional

import numpy as np

from config.config import EmbeddingsConfig

logger = logging.getLogger(__name__)

MAX_TOKENS = 256  # all-MiniLM-L6-v2 was trained with 256-token inputs


class MiniLMEmbeddingProvider:
    """
    Embeds text with all-MiniLM-L6-v2 via onnxruntime.

    The ONNX graph and tokenizer are cached under ``cache_dir``; on first use the
    model is exported from HuggingFace (needs the ``onnx-export`` extra).
    Embeddings are mean-pooled and L2-normalised.

    Args:
        config: Model name, cache directory, thread limit, dimension
    """

    def __init__(self, config: EmbeddingsConfig):
        self.logger = logging.getLogger("minilm_embeddings")
        self.config = config
        self.model_name = config.model_name
        self.cache_dir = config.cache_dir or os.path.join(
            os.path.expanduser("~"), ".cache", "sentence_transformers"
        )
        self.model_dir = os.path.join(self.cache_dir, self.model_name.replace("/", "_"))
        self.model_path = os.path.join(self.model_dir, "model.onnx")

        self.session = None
        self.tokenizer = None
        self._input_names: List[str] = []
        # Tokenizers are not safe to share across threads mid-call
        self._lock = threading.Lock()

        self._load_model()

    @property
    def dimension(self) -> int:
        return self.config.dimension

    def _load_model(self) -> None:
        """
        Raises:
            RuntimeError: If the model cannot be exported or loaded
        """
        try:
            if not os.path.exists(self.model_path):
                self._export_onnx()
            self._load_tokenizer()
            self._create_session()
        except Exception as e:
            self.logger.error(f"Failed to load {self.model_name}: {e}")
            raise RuntimeError(f"Failed to load MiniLM ONNX model: {e}") from e

        self.logger.info(f"MiniLM model loaded from {self.model_path}")

    def _load_tokenizer(self) -> None:
        from transformers import AutoTokenizer

        if os.path.exists(os.path.join(self.model_dir, "tokenizer_config.json")):
            self.tokenizer = AutoTokenizer.from_pretrained(self.model_dir)
        else:
            self.tokenizer = AutoTokenizer.from_pretrained(self.model_name, cache_dir=self.cache_dir)
            self.tokenizer.save_pretrained(self.model_dir)

    def _create_session(self) -> None:
        import onnxruntime as ort

        options = ort.SessionOptions()
        options.intra_op_num_threads = self.config.thread_limit
        options.inter_op_num_threads = 1
        self.session = ort.InferenceSession(
            self.model_path,
            sess_options=options,
            providers=["CPUExecutionProvider"],
        )
        self._input_names = [inp.name for inp in self.session.get_inputs()]

    def _export_onnx(self) -> None:
        """Export the HuggingFace model to ONNX with optimum."""
        try:
            from optimum.onnxruntime import ORTModelForFeatureExtraction
        except ImportError as e:
            raise ImportError(
                "ONNX export needs optimum: pip install 'semantic-dispatcher[onnx-export]'"
            ) from e

        os.makedirs(self.model_dir, exist_ok=True)
        ort_model = ORTModelForFeatureExtraction.from_pretrained(
            self.model_name, export=True, cache_dir=self.cache_dir
        )
        ort_model.save_pretrained(self.model_dir)
        self.logger.info(f"Exported {self.model_name} to {self.model_dir}")

    def generate(self, text: str) -> np.ndarray:
        """Embed one text; returns a normalised vector of ``dimension`` floats."""
        return self.generate_batch([text])[0]

    def generate_batch(self, texts: List[str], batch_size: int = 32) -> np.ndarray:
        """
        Embed several texts.

        Returns:
            Array of shape (len(texts), dimension)
        """
        if not texts:
            return np.zeros((0, self.dimension), dtype=np.float32)

        batches = []
        for start in range(0, len(texts), batch_size):
            batches.append(self._encode(texts[start:start + batch_size]))
        return np.vstack(batches)

    def _encode(self, texts: List[str]) -> np.ndarray:
        with self._lock:
            encoded = self.tokenizer(
                texts,
                padding=True,
                truncation=True,
                max_length=MAX_TOKENS,
                return_tensors="np",
            )
            inputs = {
                "input_ids": encoded["input_ids"],
                "attention_mask": encoded["attention_mask"],
            }
            if "token_type_ids" in self._input_names:
                inputs["token_type_ids"] = encoded.get(
                    "token_type_ids", np.zeros_like(encoded["input_ids"])
                )
            last_hidden_state = self.session.run(None, inputs)[0]

        embeddings = _mean_pool(last_hidden_state, encoded["attention_mask"])
        norms = np.linalg.norm(embeddings, axis=1, keepdims=True)
        return embeddings / (norms + 1e-10)

    def close(self) -> None:
        self.session = None
        self.tokenizer = None


def _mean_pool(token_embeddings: np.ndarray, attention_mask: np.ndarray) -> np.ndarray:
    mask = np.expand_dims(attention_mask, -1).astype(token_embeddings.dtype)
    summed = np.sum(token_embeddings * mask, axis=1)
    counts = np.clip(np.sum(mask, axis=1), a_min=1e-9, a_max=None)
    return summed / counts
