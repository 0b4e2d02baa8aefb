import pytest

from app.core.errors import DataIntegrityError, EmbeddingSpaceMismatchError
from app.core.reference_store import InMemoryReferenceStore
from app.models.media import EmbeddingSpace, Signature
from app.models.similarity import MatchType
from app.services.matcher import find_by_identity_name, find_similar_content, identity_search_token

from conftest import TEST_SPACE, basis_vector, vector_with_similarity


def signature(vector, space=TEST_SPACE):
    return Signature(vector=vector, space=space)


def test_identity_search_token():
    assert identity_search_token("Taylor Swift") == "swift"
    assert identity_search_token("Madonna") == "madonna"
    assert identity_search_token("Jane Al") == "jane"
    assert identity_search_token("Al") is None
    assert identity_search_token("") is None


def test_name_match_is_case_insensitive_substring(store):
    store.insert("IMG_TaylorSwift_02", basis_vector(0), TEST_SPACE)
    store.insert("unrelated.jpg", basis_vector(1), TEST_SPACE)

    matches = find_by_identity_name(store, "Taylor Swift")

    assert [m.label for m in matches] == ["IMG_TaylorSwift_02"]
    assert matches[0].similarity == 0.95
    assert matches[0].match_type == MatchType.IDENTITY_NAME


def test_short_name_never_matches(store):
    store.insert("al.jpg", basis_vector(0), TEST_SPACE)
    store.insert("IMG_AlPacino.jpg", basis_vector(1), TEST_SPACE)

    assert find_by_identity_name(store, "Al") == []


def test_name_matches_are_capped_at_three(store):
    for index in range(5):
        store.insert(f"swift_{index}.jpg", basis_vector(index % 4), TEST_SPACE)

    matches = find_by_identity_name(store, "Taylor Swift")

    assert len(matches) == 3
    assert len({m.reference_id for m in matches}) == 3


def test_vector_threshold_is_strict(store):
    item = store.insert("ref.jpg", basis_vector(0), TEST_SPACE)

    # Identical vectors have similarity exactly 1.0
    assert find_similar_content(store, signature(basis_vector(0)), threshold=1.0) == []
    # Orthogonal vectors have similarity exactly 0.0
    assert find_similar_content(store, signature(basis_vector(1)), threshold=0.0) == []

    matches = find_similar_content(store, signature(basis_vector(0)), threshold=0.99)
    assert [m.reference_id for m in matches] == [item.id]
    assert matches[0].match_type == MatchType.EMBEDDING


@pytest.mark.parametrize("similarity,expected", [(0.84, 0), (0.86, 1), (0.95, 1)])
def test_vector_default_threshold(store, similarity, expected):
    store.insert("ref.jpg", basis_vector(0), TEST_SPACE)
    matches = find_similar_content(store, signature(vector_with_similarity(similarity)))
    assert len(matches) == expected
    if expected:
        assert matches[0].similarity == pytest.approx(similarity)


def test_vector_matches_ordered_and_capped(store):
    for similarity in (0.90, 0.99, 0.95, 0.97, 0.50):
        store.insert(f"ref_{similarity}.jpg", vector_with_similarity(similarity), TEST_SPACE)

    matches = find_similar_content(store, signature(basis_vector(0)), threshold=0.85)

    assert [m.label for m in matches] == ["ref_0.99.jpg", "ref_0.97.jpg", "ref_0.95.jpg"]


def test_vector_query_rejects_other_spaces(store):
    store.insert("ref.jpg", basis_vector(0), TEST_SPACE)

    other_space = EmbeddingSpace(kind="other", dimensions=4)
    with pytest.raises(EmbeddingSpaceMismatchError):
        find_similar_content(store, signature(basis_vector(0), space=other_space))

    wide_space = EmbeddingSpace(kind="test", dimensions=8)
    with pytest.raises(EmbeddingSpaceMismatchError):
        find_similar_content(store, signature([1.0] + [0.0] * 7, space=wide_space))


def test_insert_rejects_wrong_width(store):
    with pytest.raises(EmbeddingSpaceMismatchError):
        store.insert("short.jpg", [1.0, 0.0], TEST_SPACE)


def test_store_from_records_validates_embeddings():
    store = InMemoryReferenceStore.from_records(TEST_SPACE, [
        {"label": "a.jpg", "embedding": "[1, 0, 0, 0]"},
        {"label": "b.jpg", "embedding": [0, 1, 0, 0], "content_type": "video"},
    ])
    assert store.count() == 2
    assert store.get(2).content_type.value == "video"

    with pytest.raises(DataIntegrityError):
        InMemoryReferenceStore.from_records(TEST_SPACE, [{"label": "bad.jpg", "embedding": '[1, "x", 0, 0]'}])


def test_insert_rejects_zero_vector(store):
    with pytest.raises(DataIntegrityError):
        store.insert("blank.jpg", [0.0, 0.0, 0.0, 0.0], TEST_SPACE)
    assert store.count() == 0


def test_query_rejects_zero_vector(store):
    store.insert("protected.jpg", basis_vector(0), TEST_SPACE)

    with pytest.raises(DataIntegrityError):
        find_similar_content(store, signature([0.0, 0.0, 0.0, 0.0]), threshold=0.9)


class NanSimilarityStore(InMemoryReferenceStore):
    """Reports an undefined similarity, as pgvector does for a zero-norm row."""

    def query_by_vector(self, vector, space, threshold, limit):
        return [(1, "zero_vector_row.jpg", float("nan"))]


def test_nan_similarity_is_never_a_match():
    store = NanSimilarityStore(TEST_SPACE)

    with pytest.raises(DataIntegrityError):
        find_similar_content(store, signature(basis_vector(0)), threshold=0.9)
