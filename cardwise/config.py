"""YAML configuration loader for cardwise.

Loads the reference-data config files from the config/ directory:
  taxonomy.yaml, mcc_codes.yaml, merchant_aliases.yaml,
  offers.yaml, settings.yaml
"""

from pathlib import Path

import yaml


class Config:
    """Loads and provides access to all YAML configuration files."""

    def __init__(self, config_dir: Path | str = "config"):
        self.config_dir = Path(config_dir)
        if not self.config_dir.is_dir():
            raise FileNotFoundError(f"Config directory not found: {self.config_dir}")

        self._taxonomy: dict | None = None
        self._mcc_codes: list[dict] | None = None
        self._merchant_aliases: list[dict] | None = None
        self._offers: dict | None = None
        self._settings: dict | None = None

    def _load(self, filename: str) -> dict | list:
        path = self.config_dir / filename
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e
        if data is None:
            raise ValueError(f"Empty config file: {path}")
        return data

    @property
    def taxonomy(self) -> dict:
        if self._taxonomy is None:
            data = self._load("taxonomy.yaml")
            if not isinstance(data, dict) or "categories" not in data:
                raise ValueError("taxonomy.yaml must define a 'categories' list")
            self._taxonomy = data
        return self._taxonomy

    @property
    def categories(self) -> list[dict]:
        """Top-level categories, each with an optional 'subcategories' list."""
        return self.taxonomy.get("categories", [])

    @property
    def catch_all_category_id(self) -> str:
        """Category every unmatched label falls back to. Default: 'cat_other'."""
        return self.taxonomy.get("catch_all", "cat_other")

    @property
    def mcc_codes(self) -> list[dict]:
        if self._mcc_codes is None:
            data = self._load("mcc_codes.yaml")
            self._mcc_codes = data.get("mcc_codes", []) if isinstance(data, dict) else data
        return self._mcc_codes

    @property
    def merchant_aliases(self) -> list[dict]:
        if self._merchant_aliases is None:
            data = self._load("merchant_aliases.yaml")
            self._merchant_aliases = data.get("aliases", []) if isinstance(data, dict) else data
        return self._merchant_aliases

    @property
    def offers_raw(self) -> dict:
        if self._offers is None:
            data = self._load("offers.yaml")
            if not isinstance(data, dict):
                raise ValueError("offers.yaml must be a mapping with 'cards'")
            self._offers = data
        return self._offers

    @property
    def reward_categories(self) -> list[dict]:
        return self.offers_raw.get("reward_categories", [])

    @property
    def offers(self) -> list[dict]:
        return self.offers_raw.get("cards", [])

    @property
    def settings(self) -> dict:
        """Flat key → value overrides for the runtime settings provider."""
        if self._settings is None:
            data = self._load("settings.yaml")
            if isinstance(data, dict):
                data = data.get("settings", data)
            if not isinstance(data, dict):
                raise ValueError("settings.yaml must be a mapping")
            self._settings = data
        return self._settings

    def category_by_id(self, category_id: str) -> dict | None:
        for cat in self.categories:
            if cat.get("id") == category_id:
                return cat
        return None

    def flatten_taxonomy(self) -> dict[str, dict]:
        """Return flat lookup: id → metadata for categories and subcategories.

        Each entry has keys: id, name, slug, parent_id (None for top level).
        """
        result: dict[str, dict] = {}
        for cat in self.categories:
            cat_id = cat.get("id", "")
            if not cat_id:
                continue
            result[cat_id] = {
                "id": cat_id,
                "name": cat.get("name", cat_id),
                "slug": cat.get("slug", cat_id),
                "parent_id": None,
            }
            for sub in cat.get("subcategories", []) or []:
                sub_id = sub.get("id", "")
                if sub_id:
                    result[sub_id] = {
                        "id": sub_id,
                        "name": sub.get("name", sub_id),
                        "slug": sub.get("slug", sub_id),
                        "parent_id": cat_id,
                    }
        return result
