import pytest

from stockledger.models import DEFAULT_CATEGORIES
from stockledger.services import settings_service
from stockledger.time_utils import utcnow
from stockledger.validation import ValidationError


class TestConfigDefaults:

    def test_first_read_creates_defaults(self, db_session):
        cfg = settings_service.get_config()

        assert cfg.shop_name == "My Shop"
        assert cfg.currency_symbol == "$"
        assert cfg.tax_rate_bps == 1600
        assert cfg.categories == DEFAULT_CATEGORIES
        assert cfg.enable_low_stock_warning is True
        assert cfg.low_stock_threshold == 5
        assert cfg.last_sync is None


class TestConfigPatch:

    def test_shallow_merge_keeps_other_fields(self, db_session):
        settings_service.update_config({"shop_name": "Abarrotes Lupita"})
        cfg = settings_service.update_config({"low_stock_threshold": 2})

        assert cfg.shop_name == "Abarrotes Lupita"
        assert cfg.low_stock_threshold == 2
        assert cfg.currency_symbol == "$"

    def test_unknown_fields_are_ignored(self, db_session):
        cfg = settings_service.update_config({"shop_name": "Tienda", "favorite_color": "blue"})

        assert cfg.shop_name == "Tienda"
        assert "favorite_color" not in cfg.to_dict()

    def test_sync_bookkeeping_is_not_patchable(self, db_session):
        cfg = settings_service.update_config({
            "last_sync": "2030-01-01T00:00:00Z",
            "drive_backup_file_id": "forged",
        })

        assert cfg.last_sync is None
        assert cfg.drive_backup_file_id is None

    def test_camel_case_aliases(self, db_session):
        cfg = settings_service.update_config({
            "shopName": "Tienda",
            "currencySymbol": "MX$",
            "lowStockThreshold": 3,
            "enableLowStockWarning": False,
            "googleDriveClientId": "client-123.apps.googleusercontent.com",
        })

        assert cfg.shop_name == "Tienda"
        assert cfg.currency_symbol == "MX$"
        assert cfg.low_stock_threshold == 3
        assert cfg.enable_low_stock_warning is False
        assert cfg.drive_client_id == "client-123.apps.googleusercontent.com"

    def test_tax_rate_fraction_becomes_basis_points(self, db_session):
        cfg = settings_service.update_config({"taxRate": 0.08})

        assert cfg.tax_rate_bps == 800

    def test_categories_are_cleaned(self, db_session):
        cfg = settings_service.update_config({"categories": [" Food ", "Food", "", "Drinks"]})

        assert cfg.categories == ["Food", "Drinks"]

    @pytest.mark.parametrize("patch", [
        {"shop_name": ""},
        {"low_stock_threshold": -1},
        {"low_stock_threshold": "5"},
        {"enable_low_stock_warning": "yes"},
        {"categories": "Food"},
        {"taxRate": "16%"},
    ])
    def test_bad_types_rejected(self, db_session, patch):
        with pytest.raises(ValidationError):
            settings_service.update_config(patch)

    def test_non_object_patch_rejected(self, db_session):
        with pytest.raises(ValidationError):
            settings_service.update_config(["shop_name"])


class TestRecordSync:

    def test_stamps_time_and_file_id(self, db_session):
        now = utcnow()

        cfg = settings_service.record_sync(file_id="remote-1", synced_at=now)

        assert cfg.last_sync == now
        assert cfg.drive_backup_file_id == "remote-1"
