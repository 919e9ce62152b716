import os
import stat

import pytest
from cryptography.hazmat.primitives import serialization

from maco.errors import Code, MacoError
from maco.storage import (
    RsaPair,
    Storage,
    StorageEvent,
    parse_state,
    walk_minions,
)
from maco.types import Minion, MinionState

MASTER_PUBLIC = b"master-public-key"
MINION_PUBLIC = b"minion-public-key"


@pytest.fixture
def root(tmp_path):
    (tmp_path / "master.pem").write_bytes(b"placeholder")
    (tmp_path / "master.pub").write_bytes(MASTER_PUBLIC)
    return str(tmp_path)


@pytest.fixture
def storage(root):
    return Storage(root)


def _add(storage, name, auto_sign=False, auto_denied=False):
    return storage.add_minion(Minion(name=name, os="linux"), MINION_PUBLIC, auto_sign, auto_denied)


def test_existing_pair_is_read(storage):
    assert storage.server_rsa() == RsaPair(private=b"placeholder", public=MASTER_PUBLIC)


def test_state_directories_created(tmp_path):
    (tmp_path / "master.pem").write_bytes(b"placeholder")
    (tmp_path / "master.pub").write_bytes(MASTER_PUBLIC)
    storage = Storage(str(tmp_path))
    assert storage.list_minions() == []
    assert os.path.isdir(tmp_path / "minions")
    for state in MinionState:
        assert os.path.isdir(tmp_path / parse_state(state))
        assert walk_minions(str(tmp_path), state) == []
        assert storage.get_minions(state) == []


def test_generates_rsa_pair(tmp_path):
    storage = Storage(tmp_path)
    pair = storage.server_rsa()
    private = serialization.load_pem_private_key(pair.private, password=None)
    public = serialization.load_pem_public_key(pair.public)
    assert private.key_size == 2048
    assert public.public_numbers() == private.public_key().public_numbers()
    assert (tmp_path / "master.pem").read_bytes() == pair.private
    assert stat.S_IMODE(os.stat(tmp_path / "master.pem").st_mode) == 0o600


def test_parse_state_directories():
    assert parse_state(MinionState.UNACCEPTED) == "minions_pre"
    assert parse_state("accepted") == "minions_accept"
    assert parse_state(MinionState.AUTO_SIGN) == "minions_autosign"
    assert parse_state(MinionState.DENIED) == "minions_denied"
    assert parse_state(MinionState.REJECTED) == "minions_rejected"


def test_parse_state_unknown():
    with pytest.raises(MacoError) as info:
        parse_state("bogus")
    assert info.value.code == Code.BAD_REQUEST
    assert info.value.detail == "unknown minion state"


def test_walk_minions_missing_dir(tmp_path):
    with pytest.raises(FileNotFoundError):
        walk_minions(tmp_path, MinionState.ACCEPTED)


def test_add_new_minion_denied(root, storage):
    info = _add(storage, "web1", auto_denied=True)
    assert info.state == "denied"
    assert info.pub_key == MASTER_PUBLIC
    assert storage.get_minions(MinionState.DENIED) == ["web1"]
    link = os.path.join(root, "minions_denied", "web1")
    assert os.readlink(link) == os.path.join(root, "minions", "web1")
    assert walk_minions(root, MinionState.DENIED) == ["web1"]


@pytest.mark.parametrize(
    "auto_sign, auto_denied, expected",
    [
        (False, False, MinionState.UNACCEPTED),
        (True, False, MinionState.AUTO_SIGN),
        (True, True, MinionState.DENIED),
    ],
)
def test_add_state_choice(storage, auto_sign, auto_denied, expected):
    info = _add(storage, "node", auto_sign, auto_denied)
    assert info.state == str(expected)
    assert storage.get_minions(expected) == ["node"]


def test_get_minion_round_trip(storage):
    _add(storage, "web1")
    key = storage.get_minion("web1")
    assert key.pub_key == MINION_PUBLIC
    assert key.state == "unaccepted"
    assert key.minion.name == "web1"
    assert key.minion.os == "linux"
    assert key.minion.registry_timestamp > 0


def test_update_and_read_minion(storage):
    _add(storage, "web1")
    minion = Minion(name="web1", hostname="host-a", tags={"role": "db"})
    storage.update_minion(minion)
    assert storage.read_minion("web1") == minion


def test_read_missing_minion(storage):
    with pytest.raises(MacoError) as info:
        storage.read_minion("ghost")
    assert info.value.code == Code.NOT_FOUND


def test_re_add_keeps_state(storage):
    _add(storage, "web1")
    storage.accept_minion("web1", False, False)
    info = _add(storage, "web1", auto_denied=True)
    assert info.state == "accepted"
    assert storage.get_minions(MinionState.DENIED) == []


def test_accept_minion(root, storage):
    _add(storage, "web1")
    events, stop = storage.subscribe()
    storage.accept_minion("web1", False, False)
    assert storage.get_minions(MinionState.ACCEPTED) == ["web1"]
    assert storage.get_minions(MinionState.UNACCEPTED) == []
    assert storage.get_minion("web1").state == "accepted"
    assert os.path.islink(os.path.join(root, "minions_accept", "web1"))
    assert not os.path.lexists(os.path.join(root, "minions_pre", "web1"))
    assert events.get_nowait() == StorageEvent(minion="web1", state=MinionState.ACCEPTED, deleted=False)
    stop()
    assert events.get_nowait() is None


def test_accept_denied_requires_flag(storage):
    _add(storage, "web1", auto_denied=True)
    with pytest.raises(MacoError) as info:
        storage.accept_minion("web1", True, False)
    assert info.value.code == Code.NOT_FOUND
    storage.accept_minion("web1", False, True)
    assert storage.get_minions(MinionState.ACCEPTED) == ["web1"]
    assert storage.get_minions(MinionState.DENIED) == []


def test_reject_accepted_and_auto_signed(storage):
    _add(storage, "a")
    _add(storage, "b", auto_sign=True)
    storage.accept_minion("a", False, False)
    with pytest.raises(MacoError):
        storage.reject_minion("a", False, False)
    storage.reject_minion("a", True, False)
    storage.reject_minion("b", True, False)
    assert storage.get_minions(MinionState.REJECTED) == ["a", "b"]
    assert storage.get_minion("b").state == "rejected"


def test_delete_minion(root, storage):
    _add(storage, "web1")
    events, _stop = storage.subscribe()
    storage.delete_minion("web1")
    assert storage.list_minions() == []
    assert not os.path.exists(os.path.join(root, "minions", "web1"))
    assert not os.path.lexists(os.path.join(root, "minions_pre", "web1"))
    assert events.get_nowait() == StorageEvent(minion="web1", state=MinionState.UNACCEPTED, deleted=True)
    with pytest.raises(MacoError) as info:
        storage.get_minion("web1")
    assert info.value.code == Code.NOT_FOUND


def test_delete_missing(storage):
    with pytest.raises(MacoError) as info:
        storage.delete_minion("ghost")
    assert info.value.code == Code.NOT_FOUND


def test_get_minions_unknown_state(storage):
    with pytest.raises(MacoError) as info:
        storage.get_minions("bogus")
    assert info.value.code == Code.BAD_REQUEST


def test_list_minions_all_states(storage):
    _add(storage, "a")
    _add(storage, "b", auto_sign=True)
    _add(storage, "c", auto_denied=True)
    assert sorted(storage.list_minions()) == ["a", "b", "c"]


def test_cache_rebuilt_on_reopen(root, storage):
    _add(storage, "a")
    _add(storage, "b")
    storage.accept_minion("b", False, False)
    reopened = Storage(root)
    assert reopened.get_minions(MinionState.UNACCEPTED) == ["a"]
    assert reopened.get_minions(MinionState.ACCEPTED) == ["b"]


def test_unsubscribed_queue_gets_no_events(storage):
    _add(storage, "web1")
    events, stop = storage.subscribe()
    stop()
    storage.accept_minion("web1", False, False)
    assert events.get_nowait() is None
    assert events.empty()