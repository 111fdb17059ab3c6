from __future__ import annotations

from pathlib import Path

from radio444.storage.db import Base, load_models


MIGRATION_PATH = Path("migrations/versions/20261019_0001_core_schema.py")


def test_core_migration_declares_tables_and_revision() -> None:
    source = MIGRATION_PATH.read_text(encoding="utf-8")

    assert 'revision = "20261019_0001"' in source
    assert "down_revision = None" in source
    for table in (
        "users",
        "media_items",
        "media_likes",
        "user_follows",
        "chat_messages",
        "credit_transactions",
        "plugin_tokens",
        "plugin_jobs",
        "stations",
        "payment_events",
    ):
        assert f'"{table}",' in source
        assert f'op.drop_table("{table}")' in source


def test_core_migration_declares_balance_and_idempotency_guards() -> None:
    source = MIGRATION_PATH.read_text(encoding="utf-8")

    assert "ck_users_credits_non_negative" in source
    assert "credits >= 0" in source
    assert "uq_credit_transactions_idempotency_key" in source
    assert "uq_payment_events_provider_event" in source
    assert "uq_media_likes_user_media" in source
    assert "uq_user_follows_pair" in source
    assert "ck_user_follows_not_self" in source
    assert "uq_plugin_tokens_token_hash" in source


def test_model_indexes_and_constraints_are_migrated() -> None:
    source = MIGRATION_PATH.read_text(encoding="utf-8")
    load_models()

    names = set()
    for table in Base.metadata.tables.values():
        names.update(index.name for index in table.indexes if index.name)
        names.update(
            constraint.name
            for constraint in table.constraints
            if isinstance(constraint.name, str) and not constraint.name.startswith(("pk_", "fk_"))
        )

    missing = sorted(name for name in names if name not in source)
    assert missing == []
