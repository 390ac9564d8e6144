"""Token store: issuance, collision handling, lookup, revocation and concurrent uniqueness."""

import threading
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from coctelera.core.config import Settings
from coctelera.core.exceptions import AccountNotFound, IssuanceFailed, TokenNotFound
from coctelera.core.security import hash_token
from coctelera.db.session import Database
from coctelera.models.api_token import ApiToken
from coctelera.services.accounts import AccountStore
from coctelera.services.tokens import IssueOutcome, TokenGenerator, TokenStore

EXPLANATION = "I want to list cocktails on my bar's website"
ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"


class ScriptedGenerator(TokenGenerator):
    """Hands out a fixed sequence of tokens."""

    def __init__(self, tokens, max_attempts=3):
        super().__init__(len(tokens[0]), ALPHABET, max_attempts)
        self._tokens = list(tokens)

    def generate(self) -> str:
        return self._tokens.pop(0) if len(self._tokens) > 1 else self._tokens[0]


class BlindGenerator(ScriptedGenerator):
    """Skips the existence check, as a concurrent issuer racing this one would."""

    def is_taken(self, db, candidate) -> bool:
        return False


class CountingGenerator(ScriptedGenerator):
    def __init__(self, tokens, max_attempts=3):
        super().__init__(tokens, max_attempts)
        self.calls = 0

    def generate(self) -> str:
        self.calls += 1
        return super().generate()


@pytest.fixture()
def accounts(db_session):
    return AccountStore(db_session)


@pytest.fixture()
def validated_id(accounts):
    account_id = accounts.create("Jane", "janedoe@mail.com", EXPLANATION)
    accounts.set_validated(account_id, True)
    return account_id


def _store(db_session, clock, generator=None, days=30):
    return TokenStore(
        db_session,
        generator or TokenGenerator(48, ALPHABET),
        timedelta(days=days),
        max_attempts=3,
        clock=clock,
    )


class TestIssue:
    def test_issue(self, db_session, clock, validated_id):
        result = _store(db_session, clock).issue(validated_id)
        assert result.outcome == IssueOutcome.issued
        assert result.issued
        assert len(result.token) == 48
        assert result.record.client_id == validated_id
        assert result.record.token_hash == hash_token(result.token)

    def test_validity_window_is_exact(self, db_session, clock, validated_id):
        result = _store(db_session, clock, days=30).issue(validated_id)
        assert result.record.created == clock.now
        assert result.record.valid_until == clock.now + timedelta(days=30)

    def test_validity_override(self, db_session, clock, validated_id):
        result = _store(db_session, clock).issue(validated_id, validity=timedelta(hours=1))
        assert result.record.valid_until - result.record.created == timedelta(hours=1)

    def test_plain_token_not_stored(self, db_session, clock, validated_id):
        result = _store(db_session, clock).issue(validated_id)
        stored = db_session.execute(select(ApiToken.token_hash)).scalars().all()
        assert result.token not in stored

    def test_refused_when_not_validated(self, db_session, clock, accounts):
        account_id = accounts.create(None, "new@mail.com", EXPLANATION)
        result = _store(db_session, clock).issue(account_id)
        assert result.outcome == IssueOutcome.account_not_validated
        assert result.token is None
        assert db_session.execute(select(func.count()).select_from(ApiToken)).scalar_one() == 0

    def test_missing_account(self, db_session, clock):
        with pytest.raises(AccountNotFound):
            _store(db_session, clock).issue("nope")


class TestCollisions:
    def test_generator_skips_existing_token(self, db_session, clock, validated_id):
        existing = "A" * 48
        _store(db_session, clock, ScriptedGenerator([existing])).issue(validated_id)

        fresh = "B" * 48
        result = _store(db_session, clock, ScriptedGenerator([existing, fresh])).issue(validated_id)
        assert result.token == fresh

    def test_insert_collision_is_retried(self, db_session, clock, validated_id):
        existing = "A" * 48
        _store(db_session, clock, ScriptedGenerator([existing])).issue(validated_id)
        db_session.expunge_all()

        fresh = "B" * 48
        result = _store(db_session, clock, BlindGenerator([existing, fresh])).issue(validated_id)
        assert result.issued
        assert result.token == fresh
        assert db_session.execute(select(func.count()).select_from(ApiToken)).scalar_one() == 2

    def test_gives_up_after_bound(self, db_session, clock, validated_id):
        existing = "A" * 48
        _store(db_session, clock, ScriptedGenerator([existing])).issue(validated_id)
        db_session.expunge_all()

        with pytest.raises(IssuanceFailed):
            _store(db_session, clock, BlindGenerator([existing])).issue(validated_id)

    def test_generator_gives_up_after_bound(self, db_session, clock, validated_id):
        existing = "A" * 48
        _store(db_session, clock, ScriptedGenerator([existing])).issue(validated_id)

        with pytest.raises(IssuanceFailed):
            _store(db_session, clock, ScriptedGenerator([existing])).issue(validated_id)

    def test_one_budget_for_all_collisions(self, db_session, clock, validated_id):
        existing = "A" * 48
        _store(db_session, clock, ScriptedGenerator([existing])).issue(validated_id)

        generator = CountingGenerator([existing])
        with pytest.raises(IssuanceFailed):
            _store(db_session, clock, generator).issue(validated_id)
        assert generator.calls == 3
        # The account row lock is released before giving up
        assert not db_session.in_transaction()

    def test_generate_unique(self, db_session, clock, validated_id):
        existing = "A" * 48
        _store(db_session, clock, ScriptedGenerator([existing])).issue(validated_id)

        assert ScriptedGenerator([existing, "B" * 48]).generate_unique(db_session) == "B" * 48
        with pytest.raises(IssuanceFailed):
            ScriptedGenerator([existing]).generate_unique(db_session)


class TestLookupAndRevoke:
    def test_lookup(self, db_session, clock, validated_id):
        store = _store(db_session, clock)
        result = store.issue(validated_id)
        assert store.lookup(result.token).client_id == validated_id

    def test_lookup_unknown(self, db_session, clock):
        with pytest.raises(TokenNotFound):
            _store(db_session, clock).lookup("not-a-token")

    def test_revoke_all_is_soft(self, db_session, clock, validated_id):
        store = _store(db_session, clock)
        first = store.issue(validated_id)
        store.issue(validated_id)

        clock.advance(minutes=5)
        assert store.revoke_all_for(validated_id) == 2

        record = store.lookup(first.token)
        assert record.valid_until == clock.now
        assert not record.is_valid_at(clock.now)
        # Already revoked tokens are not counted again
        assert store.revoke_all_for(validated_id) == 0

    def test_purge(self, db_session, clock, validated_id):
        store = _store(db_session, clock)
        result = store.issue(validated_id)
        assert store.purge_for(validated_id) == 1
        with pytest.raises(TokenNotFound):
            store.lookup(result.token)

    def test_lookup_after_account_delete(self, db_session, clock, accounts, validated_id):
        store = _store(db_session, clock)
        result = store.issue(validated_id)
        accounts.delete(validated_id)
        with pytest.raises(TokenNotFound):
            store.lookup(result.token)


def test_concurrent_issuance_never_duplicates(tmp_path):
    """Several threads, each with its own session, issuing for shared and separate accounts."""
    settings = Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'tokens.db'}",
        DB_POOL_TIMEOUT_SECONDS=30,
    )
    database = Database.from_settings(settings)
    database.create_all()

    setup = database.session()
    accounts = AccountStore(setup)
    account_ids = []
    for i in range(4):
        account_id = accounts.create(None, f"client{i}@mail.com", EXPLANATION)
        accounts.set_validated(account_id, True)
        account_ids.append(account_id)
    setup.close()

    issued: list[str] = []
    errors: list[Exception] = []
    lock = threading.Lock()

    def worker(n: int):
        db = database.session()
        try:
            store = TokenStore(db, TokenGenerator.from_settings(settings), timedelta(days=1))
            for _ in range(5):
                result = store.issue(account_ids[n % len(account_ids)])
                with lock:
                    issued.append(result.token)
        except Exception as e:
            with lock:
                errors.append(e)
        finally:
            db.close()

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(issued) == 40
    assert len(set(issued)) == 40

    check = database.session()
    try:
        rows = check.execute(select(func.count(func.distinct(ApiToken.token_hash)))).scalar_one()
        assert rows == 40
    finally:
        check.close()
        database.dispose()
