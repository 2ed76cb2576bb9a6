# Overview: Pytest coverage for rentable asset availability tracking.

import pytest

from coldchain.errors import BadRequestError, NotFoundError
from coldchain.models import ColdBox, ColdRoom, Rental
from coldchain.services import asset_service
from coldchain.time_utils import utcnow


class TestAvailability:

    def test_available_asset_in_site(self, db_session, cold_box, site_a):
        assert asset_service.check_availability("COLD_BOX", cold_box.id, site_a.id) is True

    def test_asset_in_other_site_is_unavailable(self, db_session, cold_box, site_b):
        assert asset_service.check_availability("COLD_BOX", cold_box.id, site_b.id) is False

    def test_missing_asset_is_unavailable(self, db_session, site_a):
        assert asset_service.check_availability("TRICYCLE", 404, site_a.id) is False

    def test_rented_and_maintenance_are_unavailable(self, db_session, cold_plate, tricycle, site_a):
        cold_plate.status = "RENTED"
        tricycle.status = "MAINTENANCE"
        db_session.commit()
        assert asset_service.check_availability("COLD_PLATE", cold_plate.id, site_a.id) is False
        assert asset_service.check_availability("TRICYCLE", tricycle.id, site_a.id) is False

    def test_soft_deleted_asset_is_unavailable(self, db_session, cold_box, site_a):
        cold_box.deleted_at = utcnow()
        db_session.commit()
        assert asset_service.check_availability("COLD_BOX", cold_box.id, site_a.id) is False

    def test_cold_room_is_rentable(self, db_session, room_a, site_a):
        assert asset_service.check_availability("COLD_ROOM", room_a.id, site_a.id) is True

    def test_unknown_asset_type(self, db_session, site_a):
        with pytest.raises(BadRequestError, match="Invalid asset type"):
            asset_service.check_availability("FRIDGE", 1, site_a.id)


class TestStatusChanges:

    def test_mark_rented_then_available(self, db_session, cold_box):
        asset_service.mark_as_rented("COLD_BOX", cold_box.id)
        db_session.commit()
        db_session.expire_all()
        assert db_session.get(ColdBox, cold_box.id).status == "RENTED"

        asset_service.mark_as_available("COLD_BOX", cold_box.id)
        db_session.commit()
        db_session.expire_all()
        assert db_session.get(ColdBox, cold_box.id).status == "AVAILABLE"

    def test_status_change_does_not_commit(self, db_session, room_a):
        asset_service.mark_as_rented("COLD_ROOM", room_a.id)
        db_session.rollback()
        assert db_session.get(ColdRoom, room_a.id).status == "AVAILABLE"

    def test_mark_missing_asset(self, db_session, site_a):
        with pytest.raises(NotFoundError):
            asset_service.mark_as_rented("COLD_PLATE", 999)


class TestLookups:

    def test_list_available_assets_groups_by_type(self, db_session, cold_box, cold_plate, tricycle, room_a, cold_box_b, site_a):
        tricycle.status = "MAINTENANCE"
        db_session.commit()

        result = asset_service.list_available_assets(site_a.id)
        assert [a.id for a in result["COLD_BOX"]] == [cold_box.id]
        assert [a.id for a in result["COLD_PLATE"]] == [cold_plate.id]
        assert result["TRICYCLE"] == []
        assert [a.id for a in result["COLD_ROOM"]] == [room_a.id]

    def test_list_available_assets_single_type(self, db_session, cold_box, cold_plate, site_a):
        result = asset_service.list_available_assets(site_a.id, "COLD_PLATE")
        assert list(result) == ["COLD_PLATE"]

    def test_describe_asset_uses_identifier(self, db_session, cold_box, tricycle, room_a):
        assert asset_service.describe_asset(asset_service.COLD_BOX, cold_box) == "Cold Box Rental - CB-001"
        assert asset_service.describe_asset(asset_service.TRICYCLE, tricycle) == "Tricycle Rental - RAB 123 C"
        assert asset_service.describe_asset(asset_service.COLD_ROOM, room_a) == "Cold Room Rental - Room 1"

    def test_get_asset_respects_site(self, db_session, cold_box, site_b):
        with pytest.raises(NotFoundError):
            asset_service.get_asset(asset_service.COLD_BOX, cold_box.id, site_id=site_b.id)

    def test_rental_asset_ref(self, db_session, tricycle):
        rental = Rental(asset_type="TRICYCLE", tricycle_id=tricycle.id)
        variant, asset_id = asset_service.rental_asset_ref(rental)
        assert variant is asset_service.TRICYCLE
        assert asset_id == tricycle.id
