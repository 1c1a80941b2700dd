"""
In-memory state and session stores.
"""

import pytest

import identity_access.stores as stores
from identity_access.stores import SessionStore, StateStore

from utils.fake_provider import make_identity


def test_state_is_one_shot_and_carries_flow_data():
    store = StateStore()
    rec = store.create(code_verifier="v1", redirect="/teacher/reports", signup=True)
    popped = store.pop_valid(rec.state)
    assert popped is not None
    assert (popped.code_verifier, popped.redirect, popped.signup) == ("v1", "/teacher/reports", True)
    assert store.pop_valid(rec.state) is None
    assert store.pop_valid(None) is None


def test_expired_state_is_rejected(monkeypatch):
    store = StateStore()
    rec = store.create(code_verifier="v1", ttl_seconds=10)
    monkeypatch.setattr(stores, "_now", lambda: rec.expires_at + 1)
    assert store.pop_valid(rec.state) is None


def test_session_roundtrip_keeps_identity_and_tokens():
    store = SessionStore()
    parent = make_identity("parent", children=("c1", "c2"))
    rec = store.create(identity=parent, access_token="at", refresh_token="rt")
    loaded = store.get(rec.session_id)
    assert loaded.identity == parent
    assert (loaded.access_token, loaded.refresh_token) == ("at", "rt")
    assert loaded.expires_at == rec.expires_at


def test_token_expiry_is_stored_separately_from_session_ttl():
    store = SessionStore()
    rec = store.create(identity=make_identity("teacher"), access_token="at", token_expires_at=1234, ttl_seconds=60)
    assert rec.token_expires_at == 1234
    assert rec.expires_at != 1234
    updated = store.update_identity(rec.session_id, make_identity("teacher"), token_expires_at=5678)
    assert updated.token_expires_at == 5678
    kept = store.update_identity(rec.session_id, make_identity("teacher"))
    assert kept.token_expires_at == 5678


def test_expired_session_is_dropped(monkeypatch):
    store = SessionStore()
    rec = store.create(identity=make_identity("teacher"), ttl_seconds=5)
    monkeypatch.setattr(stores, "_now", lambda: rec.expires_at + 1)
    assert store.get(rec.session_id) is None


def test_update_identity_replaces_snapshot_and_keeps_tokens_when_not_rotated():
    store = SessionStore()
    rec = store.create(identity=make_identity("parent", school_id=None), access_token="at", refresh_token="rt")
    updated = store.update_identity(rec.session_id, make_identity("parent"), access_token=None, refresh_token="rt-2")
    assert updated.school_id == "school-1"
    assert updated.access_token == "at"
    assert updated.refresh_token == "rt-2"
    assert store.get(rec.session_id).identity.school_id == "school-1"


def test_update_unknown_session_returns_none():
    assert SessionStore().update_identity("missing", make_identity("teacher")) is None


def test_delete_is_idempotent():
    store = SessionStore()
    rec = store.create(identity=make_identity("admin"))
    store.delete(rec.session_id)
    store.delete(rec.session_id)
    store.delete(None)
    assert store.get(rec.session_id) is None
