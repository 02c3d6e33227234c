from pdv.extensions import db
from pdv.models import DocumentSequence
from pdv.services import sequence_service


def test_first_allocation_starts_at_one(db_session):
    assert sequence_service.next_number("SALE") == 1
    assert sequence_service.next_number("SALE") == 2
    assert sequence_service.next_number("SALE") == 3
    db.session.commit()

    row = db.session.query(DocumentSequence).filter_by(document_type="SALE").one()
    assert row.next_number == 4


def test_document_types_are_independent(db_session):
    assert sequence_service.next_number("SALE") == 1
    assert sequence_service.next_number("RECEIPT") == 1
    assert sequence_service.next_number("SALE") == 2


def test_rolled_back_allocation_is_released(db_session):
    assert sequence_service.next_number("SALE") == 1
    db.session.commit()

    assert sequence_service.next_number("SALE") == 2
    db.session.rollback()

    assert sequence_service.next_number("SALE") == 2


def test_sale_number_is_zero_padded(app, db_session):
    assert sequence_service.next_sale_number() == "000001"

    app.config["SALE_NUMBER_WIDTH"] = 8
    try:
        assert sequence_service.next_sale_number() == "00000002"
    finally:
        app.config["SALE_NUMBER_WIDTH"] = 6
