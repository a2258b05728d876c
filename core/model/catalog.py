# pocketinfer/core/model/catalog.py
import logging
from typing import Iterable, List, Optional, Tuple

from schemas.models import ModelDescriptor, PreferredBackend

logger = logging.getLogger(f"pocketinfer.{__name__}")

_GEMMA_LICENSE = ("This response was generated using Gemma, a model developed by Google. "
                  "Usage is subject to the Gemma Terms of Use: https://ai.google.dev/gemma/terms")
_LLAMA_LICENSE = ("This response was generated using Llama, a model developed by Meta. "
                  "Usage is subject to the Llama license terms.")

MODEL_CATALOG: Tuple[ModelDescriptor, ...] = (
    ModelDescriptor(
        id="GEMMA_3_1B_IT",
        display_name="Gemma 3n E2B IT",
        file_name="gemma-3n-E2B-it-int4.task",
        source_url="https://huggingface.co/google/gemma-3n-E2B-it-litert-preview/blob/"
                   "b2b54222ba849ee74ac9f88d6af2470b390afa9e/gemma-3n-E2B-it-int4.task",
        requires_manual_auth=True,
        supports_multimodal_input=True,
        preferred_backend=PreferredBackend.CPU,
        description="Gemma 3 2B model optimized for instruction following",
        license_url="https://ai.google.dev/gemma/terms",
        license_statement=_GEMMA_LICENSE,
        temperature=1.0,
        top_k=64,
        top_p=0.95,
        max_tokens=2048,
    ),
    ModelDescriptor(
        id="DEEPSEEK_R1_DISTILL_QWEN_1_5B",
        display_name="DeepSeek-R1 Distill Qwen 1.5B",
        file_name="DeepSeek-R1-Distill-Qwen-1.5B_multi-prefill-seq_q8_ekv1280.task",
        source_url="https://huggingface.co/litert-community/DeepSeek-R1-Distill-Qwen-1.5B/resolve/main/"
                   "DeepSeek-R1-Distill-Qwen-1.5B_multi-prefill-seq_q8_ekv1280.task",
        preferred_backend=PreferredBackend.CPU,
        description="DeepSeek R1 distilled model with reasoning capabilities",
        license_url="https://huggingface.co/litert-community/DeepSeek-R1-Distill-Qwen-1.5B",
        license_statement="This response was generated using DeepSeek R1, developed by DeepSeek AI.",
        thinking=True,
        temperature=0.6,
        top_k=40,
        top_p=0.7,
        max_tokens=1280,
    ),
    ModelDescriptor(
        id="LLAMA_3_2_1B_INSTRUCT",
        display_name="Llama 3.2 1B Instruct",
        file_name="Llama-3.2-1B-Instruct_multi-prefill-seq_q8_ekv1280.task",
        source_url="https://huggingface.co/litert-community/Llama-3.2-1B-Instruct/resolve/main/"
                   "Llama-3.2-1B-Instruct_multi-prefill-seq_q8_ekv1280.task",
        requires_manual_auth=True,
        preferred_backend=PreferredBackend.CPU,
        description="Meta's Llama 3.2 1B model for instruction following",
        license_url="https://huggingface.co/litert-community/Llama-3.2-1B-Instruct",
        license_statement=_LLAMA_LICENSE,
        temperature=0.6,
        top_k=64,
        top_p=0.9,
        max_tokens=1280,
    ),
    ModelDescriptor(
        id="LLAMA_3_2_3B_INSTRUCT",
        display_name="Llama 3.2 3B Instruct",
        file_name="Llama-3.2-3B-Instruct_multi-prefill-seq_q8_ekv1280.task",
        source_url="https://huggingface.co/litert-community/Llama-3.2-3B-Instruct/resolve/main/"
                   "Llama-3.2-3B-Instruct_multi-prefill-seq_q8_ekv1280.task",
        requires_manual_auth=True,
        preferred_backend=PreferredBackend.CPU,
        description="Meta's Llama 3.2 3B model for instruction following",
        license_url="https://huggingface.co/litert-community/Llama-3.2-3B-Instruct",
        license_statement=_LLAMA_LICENSE,
        temperature=0.6,
        top_k=64,
        top_p=0.9,
        max_tokens=1280,
    ),
    ModelDescriptor(
        id="TINYLLAMA_1_1B_CHAT",
        display_name="TinyLlama 1.1B Chat",
        file_name="TinyLlama-1.1B-Chat-v1.0_multi-prefill-seq_q8_ekv1024.task",
        source_url="https://huggingface.co/litert-community/TinyLlama-1.1B-Chat-v1.0/resolve/main/"
                   "TinyLlama-1.1B-Chat-v1.0_multi-prefill-seq_q8_ekv1280.task",
        preferred_backend=PreferredBackend.CPU,
        description="Compact 1.1B parameter model optimized for chat",
        license_url="https://huggingface.co/TinyLlama/TinyLlama-1.1B-Chat-v1.0",
        license_statement="This response was generated using TinyLlama.",
        temperature=0.7,
        top_k=40,
        top_p=0.9,
        max_tokens=1024,
    ),
)

DEFAULT_MODEL_ID = "GEMMA_3_1B_IT"


class ModelCatalog:
    """
    Closed, ordered list of known model descriptors.
    Deployments and tests may pass their own list; it is never mutated afterwards.
    """

    def __init__(self, descriptors: Optional[Iterable[ModelDescriptor]] = None):
        self._descriptors: Tuple[ModelDescriptor, ...] = tuple(descriptors if descriptors is not None else MODEL_CATALOG)
        ids = [d.id for d in self._descriptors]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Duplicate model ids in catalog: {ids}")
        logger.debug(f"Model catalog initialized with {len(self._descriptors)} descriptors.")

    def __iter__(self):
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    def all(self) -> List[ModelDescriptor]:
        return list(self._descriptors)

    def get(self, model_id: str) -> Optional[ModelDescriptor]:
        for descriptor in self._descriptors:
            if descriptor.id == model_id:
                return descriptor
        return None

    def find_descriptor(self, identifier: Optional[str]) -> Optional[ModelDescriptor]:
        """
        Matches a catalog id or display name: exact first, then case-insensitive.
        """
        if not identifier or not identifier.strip():
            return None
        identifier = identifier.strip()
        for descriptor in self._descriptors:
            if identifier in (descriptor.id, descriptor.display_name):
                return descriptor
        lowered = identifier.lower()
        for descriptor in self._descriptors:
            if lowered in (descriptor.id.lower(), descriptor.display_name.lower()):
                return descriptor
        return None

    def find_by_file_name(self, file_name: str) -> Optional[ModelDescriptor]:
        for descriptor in self._descriptors:
            if descriptor.file_name == file_name:
                return descriptor
        return None

    def find_by_reference_name(self, reference_name: str) -> Optional[ModelDescriptor]:
        for descriptor in self._descriptors:
            if descriptor.reference_name == reference_name:
                return descriptor
        return None


default_catalog = ModelCatalog()


def find_descriptor(identifier: Optional[str]) -> Optional[ModelDescriptor]:
    return default_catalog.find_descriptor(identifier)


def find_by_file_name(file_name: str) -> Optional[ModelDescriptor]:
    return default_catalog.find_by_file_name(file_name)
