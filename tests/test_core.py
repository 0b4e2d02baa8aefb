import math
import os

import pytest

from app.core.database import _escape_like, space_index_sql
from app.core.errors import DataIntegrityError, EmbeddingSpaceMismatchError
from app.core.utils import cleanup_temp_dir, deserialize_embedding, serialize_embedding, validate_embedding
from app.models.media import CLIP_IMAGE_SPACE, GEMINI_TEXT_SPACE, EmbeddingSpace, parse_embedding_space


def test_embedding_round_trip():
    vector = [0.0, -1.5, 3.25, 1e-12, 123456.789]
    assert deserialize_embedding(serialize_embedding(vector)) == vector


def test_deserialize_rejects_string_element():
    with pytest.raises(DataIntegrityError):
        deserialize_embedding('[0.1, "0.2", 0.3]')


def test_deserialize_rejects_non_finite_and_non_array():
    with pytest.raises(DataIntegrityError):
        deserialize_embedding("[0.1, NaN]")
    with pytest.raises(DataIntegrityError):
        deserialize_embedding('{"values": [0.1]}')
    with pytest.raises(DataIntegrityError):
        deserialize_embedding("[0.1, true]")
    with pytest.raises(DataIntegrityError):
        deserialize_embedding("not json")


def test_validate_embedding_checks_width_and_values():
    assert validate_embedding([1, 2, 3, 4], EmbeddingSpace(kind="test", dimensions=4)) == [1.0, 2.0, 3.0, 4.0]
    with pytest.raises(EmbeddingSpaceMismatchError):
        validate_embedding([0.1] * 512, GEMINI_TEXT_SPACE)
    with pytest.raises(DataIntegrityError):
        validate_embedding([math.inf] + [0.0] * 511, CLIP_IMAGE_SPACE)


def test_parse_embedding_space():
    assert parse_embedding_space("clip-image-512") == CLIP_IMAGE_SPACE
    with pytest.raises(ValueError):
        parse_embedding_space("clip-image-768")


def test_cleanup_temp_dir(tmp_path):
    target = tmp_path / "frames"
    target.mkdir()
    (target / "frame_0.jpg").write_bytes(b"jpeg")
    cleanup_temp_dir(str(target))
    assert not os.path.exists(target)
    # Missing directories are ignored
    cleanup_temp_dir(str(target))


def test_space_index_is_partial_and_fixed_width():
    sql = space_index_sql(CLIP_IMAGE_SPACE)
    assert "idx_protected_content_hnsw_clip_image_512" in sql
    assert "embedding::vector(512)" in sql
    assert "WHERE embedding_space = 'clip-image-512'" in sql


def test_like_wildcards_are_escaped():
    assert _escape_like("50%_off") == "50\\%\\_off"


def test_deserialize_rejects_overflowing_integer():
    with pytest.raises(DataIntegrityError):
        deserialize_embedding("[1" + "0" * 400 + ", 0, 0, 0]")


def test_validate_embedding_rejects_overflowing_integer():
    space = EmbeddingSpace(kind="test", dimensions=4)
    with pytest.raises(DataIntegrityError):
        validate_embedding([10 ** 400, 0, 0, 0], space)
