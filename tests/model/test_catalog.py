import pytest

from core.model.catalog import MODEL_CATALOG, DEFAULT_MODEL_ID, ModelCatalog, default_catalog, find_descriptor
from schemas.models import ModelDescriptor


def test_catalog_ids_are_unique_and_default_is_listed():
    ids = [d.id for d in MODEL_CATALOG]
    assert len(ids) == len(set(ids))
    assert DEFAULT_MODEL_ID in ids


def test_find_descriptor_matches_id_and_display_name():
    assert find_descriptor("TINYLLAMA_1_1B_CHAT").display_name == "TinyLlama 1.1B Chat"
    assert find_descriptor("Llama 3.2 3B Instruct").id == "LLAMA_3_2_3B_INSTRUCT"


def test_find_descriptor_falls_back_to_case_insensitive():
    assert find_descriptor("tinyllama_1_1b_chat").id == "TINYLLAMA_1_1B_CHAT"
    assert find_descriptor("  gemma 3n e2b it ").id == "GEMMA_3_1B_IT"


@pytest.mark.parametrize("identifier", [None, "", "   ", "GPT_5"])
def test_find_descriptor_returns_none_for_blank_or_unknown(identifier):
    assert find_descriptor(identifier) is None


def test_reference_name_is_derived_from_file_name():
    descriptor = default_catalog.get("DEEPSEEK_R1_DISTILL_QWEN_1_5B")
    assert descriptor.reference_name == descriptor.file_name + ".ref"
    assert default_catalog.find_by_reference_name(descriptor.reference_name) is descriptor
    assert default_catalog.find_by_file_name(descriptor.file_name) is descriptor


def test_descriptor_flags():
    gemma = default_catalog.get("GEMMA_3_1B_IT")
    deepseek = default_catalog.get("DEEPSEEK_R1_DISTILL_QWEN_1_5B")
    assert gemma.supports_multimodal_input and gemma.requires_manual_auth
    assert deepseek.thinking and not deepseek.supports_multimodal_input


def test_custom_catalog_rejects_duplicate_ids():
    descriptor = ModelDescriptor(id="X", display_name="X", file_name="x.task", source_url="https://example.invalid/x")
    with pytest.raises(ValueError):
        ModelCatalog([descriptor, descriptor])
    assert len(ModelCatalog([descriptor])) == 1
