import os
import unittest
from unittest.mock import patch

from ffe_sync import create_app
from ffe_sync.config import Config, _bool_env, _decimal_env, _int_env
from tests.helpers.temp_db import TempDbSandbox


class ConfigEnvHelpersTest(unittest.TestCase):
    def test_env_helpers_fall_back_on_garbage(self) -> None:
        with patch.dict(os.environ, {"X_FLAG": "Yes", "X_INT": "abc", "X_DEC": "1,5"}):
            self.assertTrue(_bool_env("X_FLAG", False))
            self.assertEqual(_int_env("X_INT", 7), 7)
            self.assertEqual(_decimal_env("X_DEC", "0.01"), "0.01")

        with patch.dict(os.environ, {"X_DEC": " 2.5 "}):
            self.assertEqual(_decimal_env("X_DEC", "0.01"), "2.5")
        self.assertFalse(_bool_env("X_MISSING_FLAG", False))


class ProductionGuardTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="config_guard")

    def tearDown(self) -> None:
        self._temp_db.cleanup()

    def test_production_requires_database_url_and_secret(self) -> None:
        missing_url = self._temp_db.make_config(Config, DATABASE_URL=None, SECRET_KEY="real-secret")
        dev_secret = self._temp_db.make_config(Config, DATABASE_URL="postgresql://db/ffe")

        with patch.dict(os.environ, {"FLASK_ENV": "production"}):
            with self.assertRaises(RuntimeError):
                create_app(missing_url)
            with self.assertRaises(RuntimeError):
                create_app(dev_secret)

    def test_development_accepts_defaults(self) -> None:
        with patch.dict(os.environ, {"FLASK_ENV": "development"}):
            app = create_app(self._temp_db.make_config(Config))

        self.assertEqual(app.config["DEFAULT_CURRENCY"], "USD")
        self.assertEqual(app.config["PAYMENT_OVERPAY_TOLERANCE"], "0.01")
        self.assertFalse(app.config["ORDER_REQUIRES_FULL_PAYMENT"])


if __name__ == "__main__":
    unittest.main()
