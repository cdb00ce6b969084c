import threading
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

import churchdesk.models  # noqa: F401
from churchdesk.db.base import Base
from churchdesk.db.upsert import insert_ignoring_conflict
from churchdesk.models.organization import Organization
from churchdesk.models.whatsapp import WhatsAppConfig, WhatsAppConversation
from churchdesk.services.conversation_service import resolve_conversation


def _seed_config(db) -> str:
    organization = Organization(name="Igreja Nova Vida")
    db.add(organization)
    db.flush()
    config = WhatsAppConfig(organization_id=organization.id, instance_name="nova-vida")
    db.add(config)
    db.commit()
    return config.id


def test_resolve_conversation_is_get_or_create(test_context):
    _, session_local = test_context
    with session_local() as db:
        config_id = _seed_config(db)

        first, created = resolve_conversation(
            db, config_id=config_id, phone_number="+5511988887777", contact_name="Paulo Lima"
        )
        db.commit()
        second, created_again = resolve_conversation(
            db, config_id=config_id, phone_number="+5511988887777", contact_name="Outro Nome"
        )
        db.commit()
        other, other_created = resolve_conversation(
            db, config_id=config_id, phone_number="+5511900001111", contact_name=None
        )
        db.commit()

        assert created is True
        assert created_again is False
        assert other_created is True
        assert first.id == second.id
        assert other.id != first.id
        assert second.contact_name == "Paulo Lima"
        assert second.status == "active"


def test_concurrent_resolution_creates_single_conversation(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'conversations.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    with session_local() as db:
        config_id = _seed_config(db)

    workers = 8
    barrier = threading.Barrier(workers)
    results: list[tuple[str, bool]] = []
    errors: list[Exception] = []
    lock = threading.Lock()

    def _resolve():
        with session_local() as db:
            barrier.wait()
            try:
                conversation, created = resolve_conversation(
                    db,
                    config_id=config_id,
                    phone_number="+5511977776666",
                    contact_name="Clara",
                )
                db.commit()
            except Exception as exc:  # noqa: BLE001
                with lock:
                    errors.append(exc)
                return
            with lock:
                results.append((conversation.id, created))

    threads = [threading.Thread(target=_resolve) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(results) == workers
    assert len({conversation_id for conversation_id, _ in results}) == 1
    assert sum(1 for _, created in results if created) == 1

    with session_local() as db:
        total = db.execute(select(func.count()).select_from(WhatsAppConversation)).scalar_one()
    assert total == 1
    engine.dispose()


def test_insert_ignoring_conflict_rejects_unsupported_dialects():
    db = MagicMock()
    db.get_bind.return_value.dialect.name = "mysql"

    with pytest.raises(ValueError, match="mysql"):
        insert_ignoring_conflict(
            db,
            WhatsAppConversation,
            values={"config_id": "cfg-1", "phone_number": "+5511999999999"},
            conflict_columns=["config_id", "phone_number"],
        )
    db.execute.assert_not_called()
