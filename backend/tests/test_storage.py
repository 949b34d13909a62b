import pytest

from hanzi import storage
from hanzi.errors import StorageError, ValidationError


def test_missing_file_is_empty_store(tmp_path):
    assert storage.read_rows(tmp_path / 'nope.csv', storage.PROGRESS_HEADER) == []


def test_read_skips_header_and_blank_lines(tmp_path):
    path = tmp_path / 'progress.csv'
    path.write_text('characterId,correct,incorrect\n\n1,2,3\n  \n4,5,6', encoding='utf-8')
    assert storage.read_rows(path, storage.PROGRESS_HEADER) == [['1', '2', '3'], ['4', '5', '6']]


def test_read_tolerates_bom(tmp_path):
    path = tmp_path / 'progress.csv'
    path.write_bytes('\ufeffcharacterId,correct,incorrect\n1,0,1\n'.encode('utf-8'))
    assert storage.read_rows(path, storage.PROGRESS_HEADER) == [['1', '0', '1']]


def test_unexpected_header_is_a_storage_error(tmp_path):
    path = tmp_path / 'progress.csv'
    path.write_text('id,correct,incorrect\n1,2,3\n', encoding='utf-8')
    with pytest.raises(StorageError):
        storage.read_rows(path, storage.PROGRESS_HEADER)


def test_undecodable_file_is_a_storage_error(tmp_path):
    path = tmp_path / 'progress.csv'
    path.write_bytes(b'characterId,correct,incorrect\n\xff\xfe\xfa,1,2\n')
    with pytest.raises(StorageError):
        storage.read_rows(path, storage.PROGRESS_HEADER)


def test_write_replaces_whole_file(tmp_path):
    path = tmp_path / 'nested' / 'characters.csv'
    storage.write_rows(path, storage.CHARACTERS_HEADER, [('1', '水', 'shuǐ', 'water', '')])
    storage.write_rows(path, storage.CHARACTERS_HEADER, [('2', '火', 'huǒ', 'fire', '火车')])
    assert path.read_text(encoding='utf-8') == 'id,character,pinyin,meaning,phrase\n2,火,huǒ,fire,火车\n'
    # no temporary files left behind
    assert [p.name for p in path.parent.iterdir()] == ['characters.csv']


def test_write_rejects_fields_that_need_quoting(tmp_path):
    path = tmp_path / 'characters.csv'
    storage.write_rows(path, storage.CHARACTERS_HEADER, [('1', '水', 'shuǐ', 'water', '')])
    with pytest.raises(ValidationError):
        storage.write_rows(path, storage.CHARACTERS_HEADER, [('1', '水', 'shuǐ', 'water, drink', '')])
    # previous content untouched
    assert 'water, drink' not in path.read_text(encoding='utf-8')


def test_check_field():
    assert storage.check_field('phrase', '喝水') == '喝水'
    for bad in ('a,b', 'a"b', 'a\nb'):
        with pytest.raises(ValidationError):
            storage.check_field('phrase', bad)


def test_user_dir_created_under_data_root(data_dir):
    path = storage.user_dir('someone')
    assert path == data_dir / 'users' / 'someone'
    assert path.is_dir()
