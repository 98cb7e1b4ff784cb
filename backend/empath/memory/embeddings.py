# empath/memory/embeddings.py text vectorization with a content-hash cache
"""
Embedding service that converts text into vectors.

Provides one interface over several model types:
  - "openai": any OpenAI-compatible /embeddings endpoint
  - "sentence_transformer": a local Sentence Transformers model
  - "hashing": deterministic feature hashing, no network or model download;
    used for offline development and tests

Results are cached by an md5 of (model name, text) so repeated content never
costs a second provider call. Every provider failure surfaces as
ProviderError.
"""
from __future__ import annotations

import asyncio
import functools
import hashlib
import logging
import re
import threading
import time
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Union

import numpy as np
import openai

from empath.core.config import VECTORIZATION_CONFIG
from empath.utils.exception import ProviderError

# optional local-model dependencies
try:
    import torch
except ImportError:
    torch = None

try:
    from sentence_transformers import SentenceTransformer
except ImportError:
    SentenceTransformer = None

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"\w+", re.UNICODE)


def hashing_embed(text: str, dimensions: int) -> np.ndarray:
    """
    Feature-hash words and their character trigrams into a unit vector.

    Texts sharing words land close together, which is enough for semantic
    search to behave sensibly without a model. Empty text maps to the zero
    vector.
    """
    vector = np.zeros(dimensions, dtype=np.float32)
    for word in _TOKEN.findall(text.lower()):
        padded = f"#{word}#"
        features = [word] + [padded[i:i + 3] for i in range(len(padded) - 2)]
        for j, feature in enumerate(features):
            digest = hashlib.md5(feature.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "little") % dimensions
            sign = 1.0 if digest[4] & 1 else -1.0
            # whole words weigh more than their trigrams
            vector[bucket] += sign * (2.0 if j == 0 else 1.0)
    norm = float(np.linalg.norm(vector))
    if norm > 0:
        vector /= norm
    return vector


class EmbeddingService:
    """
    Unified text -> vector service over several model types.
    Implements the EmbeddingProvider protocol via `embed`.
    """

    def __init__(
        self,
        model_config: Dict[str, Any],
        cache_size: int = VECTORIZATION_CONFIG["cache_size"],
        preload: bool = False,
    ):
        """
        Args:
            model_config: one entry of VECTORIZATION_CONFIG["models"].
            cache_size: number of embeddings to keep, 0 disables the cache.
            preload: load the model in a background thread right away.
        """
        self.model_config = model_config
        self.model_type = self.model_config.get("type")
        self.vector_dim = self.model_config.get("dimensions")

        self._model = None
        self.cache_size = cache_size
        self.embedding_cache: "OrderedDict[str, np.ndarray]" = OrderedDict()
        self.cache_hits = 0
        self.cache_misses = 0
        self._is_ready = False
        self._init_error: Optional[Exception] = None
        self._ready_event = threading.Event()

        if not self.model_type or not self.vector_dim:
            raise ValueError("model config must contain 'type' and 'dimensions'")

        if preload:
            threading.Thread(target=self._initialize_model, daemon=True).start()
            logger.info(f"Loading embedding model '{self.model_config['model_name']}' in the background...")
        else:
            self._initialize_model()

    def _initialize_model(self):
        """Load and initialize the configured model."""
        try:
            if self.model_type == "sentence_transformer":
                self._initialize_sentence_transformer()
            elif self.model_type == "openai":
                self._initialize_openai()
            elif self.model_type == "hashing":
                self._model = "hashing"
            else:
                raise ValueError(f"Unsupported model type: {self.model_type}")
            self._is_ready = True
        except Exception as e:
            self._init_error = e
            logger.error(f"Failed to initialize embedding model: {e}", exc_info=True)
        finally:
            self._ready_event.set()

    def _initialize_sentence_transformer(self):
        if SentenceTransformer is None:
            raise ImportError("Sentence Transformers is not installed. Run 'pip install empath[local]'")
        if torch is None:
            raise ImportError("PyTorch is not installed. Run 'pip install torch'")

        start_time = time.time()
        model_name = self.model_config['model_name']
        device = self.model_config.get('device')

        if device == 'cuda' and not torch.cuda.is_available():
            logger.warning("CUDA requested but unavailable, falling back to CPU.")
            device = 'cpu'
        elif device is None:
            device = 'cuda' if torch.cuda.is_available() else 'cpu'

        logger.info(f"Loading Sentence Transformer model onto device: {device}")
        self._model = SentenceTransformer(model_name, device=device)
        logger.info(f"Initialized Sentence Transformer {model_name} in {time.time() - start_time:.2f}s")

    def _initialize_openai(self):
        self._model = openai.AsyncOpenAI(
            api_key=self.model_config.get('api_key') or "missing-key",
            base_url=self.model_config['base_url'],
            timeout=self.model_config.get('timeout', 10.0),
        )
        logger.info(f"Initialized OpenAI embeddings client, model: {self.model_config['model_name']}")

    def _hash_text(self, text: str) -> str:
        key = f"{self.model_config.get('model_name')}:{text}"
        return hashlib.md5(key.encode('utf-8')).hexdigest()

    def _cache_embeddings(self, texts: List[str], embeddings: np.ndarray) -> None:
        if self.cache_size <= 0:
            return
        for i, text in enumerate(texts):
            self.embedding_cache[self._hash_text(text)] = embeddings[i]
        while len(self.embedding_cache) > self.cache_size:
            self.embedding_cache.popitem(last=False)

    def _get_cached_embeddings(self, texts: List[str]) -> Dict[int, np.ndarray]:
        if self.cache_size <= 0:
            return {}
        cached = {}
        for i, text in enumerate(texts):
            cache_key = self._hash_text(text)
            if cache_key in self.embedding_cache:
                self.embedding_cache.move_to_end(cache_key)
                cached[i] = self.embedding_cache[cache_key]
        return cached

    async def embed(self, text: str) -> np.ndarray:
        """Embed a single text."""
        return await self.embed_text(text)

    async def embed_text(self, text: Union[str, List[str]]) -> np.ndarray:
        """
        Convert a text or a list of texts into embeddings.

        Returns a 1-D vector for a single text and a 2-D array otherwise.
        Raises ProviderError when the model is unavailable or the call fails.
        """
        if not self._is_ready:
            await asyncio.get_running_loop().run_in_executor(None, self.wait_until_ready)
        if not self._model:
            raise ProviderError(f"Embedding model not initialized: {self._init_error}")

        is_single_text = isinstance(text, str)
        texts = [text] if is_single_text else list(text)

        cached_results = self._get_cached_embeddings(texts)
        self.cache_hits += len(cached_results)

        to_embed_indices = [i for i in range(len(texts)) if i not in cached_results]
        to_embed = [texts[i] for i in to_embed_indices]
        self.cache_misses += len(to_embed)

        new_embeddings = np.zeros((0, self.vector_dim), dtype=np.float32)
        if to_embed:
            try:
                if self.model_type == "sentence_transformer":
                    new_embeddings = await self._embed_sentence_transformer(to_embed)
                elif self.model_type == "openai":
                    new_embeddings = await self._embed_openai(to_embed)
                else:
                    new_embeddings = np.stack([hashing_embed(t, self.vector_dim) for t in to_embed])
            except ProviderError:
                raise
            except Exception as e:
                raise ProviderError(f"Embedding request failed: {e}") from e

            new_embeddings = np.asarray(new_embeddings, dtype=np.float32)
            if new_embeddings.shape != (len(to_embed), self.vector_dim):
                raise ProviderError(
                    f"Provider returned shape {new_embeddings.shape}, expected ({len(to_embed)}, {self.vector_dim})"
                )
            if not np.all(np.isfinite(new_embeddings)):
                raise ProviderError("Provider returned non-finite values")
            self._cache_embeddings(to_embed, new_embeddings)

        final_embeddings = np.zeros((len(texts), self.vector_dim), dtype=np.float32)
        for i, embedding in cached_results.items():
            final_embeddings[i] = embedding
        for row, i in enumerate(to_embed_indices):
            final_embeddings[i] = new_embeddings[row]

        return final_embeddings[0] if is_single_text else final_embeddings

    async def _embed_sentence_transformer(self, texts: List[str]) -> np.ndarray:
        # encode is CPU bound, keep it off the event loop
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            functools.partial(self._model.encode, sentences=texts, batch_size=self.model_config.get('batch_size', 32))
        )

    async def _embed_openai(self, texts: List[str]) -> np.ndarray:
        response = await self._model.embeddings.create(
            input=texts,
            model=self.model_config['model_name'],
            dimensions=self.vector_dim,
        )
        return np.array([item.embedding for item in response.data], dtype=np.float32)

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        return self._ready_event.wait(timeout=timeout)

    def get_dimension(self) -> int:
        return int(self.vector_dim)

    def cache_stats(self) -> Dict[str, Any]:
        return {
            "size": len(self.embedding_cache),
            "capacity": self.cache_size,
            "hits": self.cache_hits,
            "misses": self.cache_misses,
        }

    def clear_cache(self) -> None:
        self.embedding_cache.clear()
        logger.info("Embedding cache cleared")


# --- factory ---
_default_embedding_service: Optional[EmbeddingService] = None


def get_embedding_service(
    model_key: Optional[str] = None,
    force_new: bool = False,
) -> EmbeddingService:
    """
    Get or create the shared embedding service.

    Args:
        model_key: key into VECTORIZATION_CONFIG["models"]; None means the default model.
        force_new: always build a new instance.
    """
    global _default_embedding_service

    if model_key is None:
        model_key = VECTORIZATION_CONFIG['default_model']
    model_config = VECTORIZATION_CONFIG['models'][model_key]

    if _default_embedding_service is None or \
       force_new or \
       _default_embedding_service.model_config.get('model_name') != model_config.get('model_name'):
        logger.info(f"Creating embedding service with model: {model_key}")
        _default_embedding_service = EmbeddingService(
            model_config=model_config,
            preload=model_config["type"] == "sentence_transformer",
        )

    return _default_embedding_service
