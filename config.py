import os
import yaml
import keyring

APP_VERSION = "1.0.0"
DEFAULT_DB_PATH = os.environ.get("LIFTLOG_DB", "liftlog.db")
KEYRING_SERVICE = "liftlog"


class YamlConfig:
    """YAML mirror of the settings table.

    When ``ENCRYPT_SETTINGS=1`` the values of :attr:`SENSITIVE_KEYS` are kept
    in the system keyring and the file only records that one is stored.
    """

    SENSITIVE_KEYS = frozenset({"backend_api_key"})

    def __init__(self, path: str = "settings.yaml", service: str = KEYRING_SERVICE) -> None:
        self.path = path
        self.service = service

    @property
    def use_keyring(self) -> bool:
        return os.environ.get("ENCRYPT_SETTINGS") == "1"

    def _read(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    def load(self) -> dict:
        data = self._read()
        if not self.use_keyring:
            return data
        for key in self.SENSITIVE_KEYS & set(data):
            secret = keyring.get_password(self.service, key)
            if secret is None:
                del data[key]
            else:
                data[key] = secret
        return data

    def save(self, data: dict) -> None:
        out = dict(data)
        if self.use_keyring:
            for key in self.SENSITIVE_KEYS & set(out):
                keyring.set_password(self.service, key, str(out[key]))
                out[key] = True
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(out, f, sort_keys=True)
