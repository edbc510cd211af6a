"""Tests des opérations Mercado Livre (annonces, stock, questions)"""
from datetime import timedelta

import pytest
from sqlmodel import select

from app.core.exceptions import CredentialsNotFound, MarketplaceAPIError
from app.models.integration import MERCADO_LIVRE
from app.models.integration_log import IntegrationLog
from app.models.marketplace import ItemStatus, Product, Question
from app.services.audit_log import AuditLog, SQLAuditSink
from app.services.credential_store import SQLCredentialStore
from app.services.mercadolivre_service import MercadoLivreService

pytestmark = pytest.mark.asyncio


@pytest.fixture
def ml_service(db_session, provider, token_manager_factory):
    sink = SQLAuditSink(db_session)
    tokens = token_manager_factory(SQLCredentialStore(db_session), sink)
    return MercadoLivreService(db_session, tokens, AuditLog(sink), transport=provider.transport)


def audit_actions(db_session):
    return [(log.action, log.status) for log in db_session.exec(select(IntegrationLog)).all()]


async def test_pause_item(ml_service, db_session, provider, parse_json, stored_integration, user_id):
    provider.on("PUT", "/items/MLB123", json_body={"id": "MLB123", "status": "paused"})

    message = await ml_service.update_item_status(user_id, "MLB123", ItemStatus.PAUSED)

    [request] = provider.calls("PUT", "/items/MLB123")
    assert request.headers["authorization"] == "Bearer APP_USR-old-access"
    assert parse_json(request) == {"status": "paused"}
    assert message == "Anúncio pausado."
    product = db_session.exec(select(Product).where(Product.ml_item_id == "MLB123")).one()
    assert product.status == "paused"
    assert ("update_status", "success") in audit_actions(db_session)


async def test_stale_token_refreshed_before_call(ml_service, provider, clock, token_body, stored_integration, user_id):
    clock.now = clock.now + timedelta(hours=6)
    provider.on("POST", "/oauth/token", json_body=token_body())
    provider.on("PUT", "/items/MLB123", json_body={})

    await ml_service.update_item_stock(user_id, "MLB123", 7)

    [request] = provider.calls("PUT", "/items/MLB123")
    assert request.headers["authorization"] == "Bearer APP_USR-new-access"
    assert len(provider.calls("POST", "/oauth/token")) == 1


async def test_marketplace_error_carries_provider_message(ml_service, db_session, provider, stored_integration, user_id):
    provider.on("PUT", "/items/MLB123", status=400, json_body={"message": "Item under review", "error": "validation_error"})

    with pytest.raises(MarketplaceAPIError) as exc:
        await ml_service.update_item_status(user_id, "MLB123", ItemStatus.ACTIVE)

    assert exc.value.message == "Item under review"
    assert exc.value.status_code == 400
    assert ("update_status", "error") in audit_actions(db_session)
    assert db_session.exec(select(Product)).all() == []


async def test_not_connected(ml_service, provider, user_id):
    with pytest.raises(CredentialsNotFound):
        await ml_service.update_item_stock(user_id, "MLB123", 1)
    assert provider.requests == []


async def test_negative_stock_rejected(ml_service, stored_integration, user_id):
    with pytest.raises(ValueError):
        await ml_service.update_item_stock(user_id, "MLB123", -1)


async def test_sync_questions_upserts(ml_service, db_session, provider, stored_integration, user_id):
    provider.on("GET", "/questions/search", json_body={
        "total": 2,
        "questions": [
            {"id": 1001, "item_id": "MLB123", "text": "Tem em azul?", "status": "UNANSWERED", "date_created": "2025-01-15T09:00:00.000-04:00"},
            {"id": 1002, "item_id": "MLB456", "text": "Qual o prazo?", "status": "UNANSWERED", "date_created": "2025-01-15T10:00:00.000-04:00"},
        ],
    })

    found = await ml_service.sync_questions(user_id)
    # Une deuxième synchro ne duplique rien
    await ml_service.sync_questions(user_id)

    assert found == 2
    [request, _] = provider.calls("GET", "/questions/search")
    assert request.url.params["seller_id"] == "123456789"
    assert request.url.params["status"] == "UNANSWERED"
    assert len(db_session.exec(select(Question)).all()) == 2
    assert SQLCredentialStore(db_session).get_row(user_id, MERCADO_LIVRE).last_sync is not None


async def test_sync_questions_resolves_seller_id(ml_service, db_session, provider, record_factory, user_id):
    SQLCredentialStore(db_session).upsert(record_factory(user_id, extra={}))
    provider.on("GET", "/users/me", json_body={"id": 555})
    provider.on("GET", "/questions/search", json_body={"questions": []})

    assert await ml_service.sync_questions(user_id) == 0
    assert provider.calls("GET", "/questions/search")[0].url.params["seller_id"] == "555"


async def test_answer_question(ml_service, db_session, provider, parse_json, stored_integration, user_id):
    db_session.add(Question(user_id=user_id, ml_question_id=1001, item_id="MLB123", text="Tem em azul?"))
    db_session.commit()
    provider.on("POST", "/answers", json_body={"id": 1001, "status": "ANSWERED"})

    await ml_service.answer_question(user_id, 1001, "Temos sim!")

    assert parse_json(provider.calls("POST", "/answers")[0]) == {"question_id": 1001, "text": "Temos sim!"}
    question = db_session.exec(select(Question)).one()
    assert question.status == "ANSWERED"
    assert question.answer_text == "Temos sim!"
