"""Versioned role tables (multiplier + maxout factor per role name).

The tables are data, not code: they ship as `role_tables.json` next to this module
and can be replaced wholesale through `ROLE_TABLES_PATH`. Each top-level key is a
version; `ROLE_TABLES_VERSION` picks the live one.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from vcare_access.config import load_config

UNLIMITED = "unlimited"

MaxoutFactor = Union[float, str]

MIN_MULTIPLIER = 1.0
MAX_MULTIPLIER = 3.0
DEFAULT_MULTIPLIER = 1.0
DEFAULT_MAXOUT = 1.0


def _debug(msg: str) -> None:
    print(f"[economics] {msg}")


@dataclass(frozen=True)
class RoleSpec:
    name: str
    multiplier: float = DEFAULT_MULTIPLIER
    maxout: MaxoutFactor = DEFAULT_MAXOUT

    @property
    def is_unlimited(self) -> bool:
        return self.maxout == UNLIMITED


@dataclass(frozen=True)
class RoleTable:
    version: str
    roles: Mapping[str, RoleSpec]
    description: str = ""

    def spec(self, role_name: str) -> RoleSpec:
        """Look up a role. Unknown names get multiplier 1.0 and maxout 1.0."""
        name = str(role_name or "")
        found = self.roles.get(name)
        if found is not None:
            return found
        return RoleSpec(name=name)

    def multiplier(self, role_name: str) -> float:
        return self.spec(role_name).multiplier

    def maxout(self, role_name: str) -> MaxoutFactor:
        return self.spec(role_name).maxout

    def as_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "description": self.description,
            "roles": {
                name: {"multiplier": s.multiplier, "maxout": s.maxout} for name, s in self.roles.items()
            },
        }


def _parse_role(version: str, name: str, raw: Mapping[str, Any]) -> RoleSpec:
    multiplier = float(raw.get("multiplier", DEFAULT_MULTIPLIER))
    if not (MIN_MULTIPLIER <= multiplier <= MAX_MULTIPLIER):
        raise ValueError(f"role_tables[{version}][{name}]: multiplier {multiplier} outside [1.0, 3.0]")

    maxout_raw = raw.get("maxout", DEFAULT_MAXOUT)
    if isinstance(maxout_raw, str):
        if maxout_raw.strip().lower() != UNLIMITED:
            raise ValueError(f"role_tables[{version}][{name}]: unknown maxout {maxout_raw!r}")
        maxout: MaxoutFactor = UNLIMITED
    else:
        maxout = float(maxout_raw)
        if maxout <= 0:
            raise ValueError(f"role_tables[{version}][{name}]: maxout must be positive")

    return RoleSpec(name=name, multiplier=multiplier, maxout=maxout)


def parse_role_tables(doc: Mapping[str, Any]) -> Dict[str, RoleTable]:
    """Validate a role-tables document and return {version: RoleTable}."""
    out: Dict[str, RoleTable] = {}
    for version, body in doc.items():
        roles_raw = (body or {}).get("roles") or {}
        roles = {str(name): _parse_role(version, str(name), spec or {}) for name, spec in roles_raw.items()}
        out[str(version)] = RoleTable(
            version=str(version),
            roles=roles,
            description=str((body or {}).get("description") or ""),
        )
    return out


def _read_document(path: Optional[str]) -> Dict[str, Any]:
    if path:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    text = resources.files("vcare_access.economics").joinpath("role_tables.json").read_text(encoding="utf-8")
    return json.loads(text)


@lru_cache(maxsize=8)
def load_role_tables(path: Optional[str] = None) -> Dict[str, RoleTable]:
    tables = parse_role_tables(_read_document(path))
    _debug(f"Loaded role tables versions={sorted(tables)} from {path or 'package'}")
    return tables


def get_role_table(version: str, path: Optional[str] = None) -> RoleTable:
    tables = load_role_tables(path)
    try:
        return tables[version]
    except KeyError:
        raise ValueError(f"unknown role table version: {version!r} (have {sorted(tables)})") from None


def default_role_table() -> RoleTable:
    """The table selected by ROLE_TABLES_VERSION / ROLE_TABLES_PATH."""
    cfg = load_config()
    return get_role_table(cfg.ROLE_TABLES_VERSION, cfg.ROLE_TABLES_PATH)
