# geofeed/services/test_kv_store.py
from geofeed.services.kv_store import JsonFileKeyValueStore


def test_roundtrip_and_persistence(tmp_path):
    path = str(tmp_path / 'nested' / 'kv.json')
    store = JsonFileKeyValueStore(path)
    store.set('userData', {'uid': 'alice', 'displayName': '앨리스'})
    store.set('temp_a', 1)

    reopened = JsonFileKeyValueStore(path)
    assert reopened.get('userData') == {'uid': 'alice', 'displayName': '앨리스'}
    assert sorted(reopened.list_keys()) == ['temp_a', 'userData']

    reopened.remove_many(['temp_a', 'missing'])
    reopened.remove('userData')
    assert reopened.list_keys() == []


def test_corrupt_file_reads_as_empty(tmp_path):
    path = tmp_path / 'kv.json'
    path.write_text('{not json', encoding='utf-8')
    store = JsonFileKeyValueStore(str(path))
    assert store.get('anything') is None

    store.set('k', 'v')
    assert JsonFileKeyValueStore(str(path)).get('k') == 'v'


def test_null_values_can_be_removed(tmp_path):
    store = JsonFileKeyValueStore(str(tmp_path / 'kv.json'))
    store.set('imageCache_x', None)
    store.set('imageCache_y', None)
    assert sorted(store.list_keys()) == ['imageCache_x', 'imageCache_y']

    store.remove('imageCache_x')
    assert store.list_keys() == ['imageCache_y']

    store.remove_many(['imageCache_y', 'imageCache_y'])
    assert JsonFileKeyValueStore(store.path).list_keys() == []
