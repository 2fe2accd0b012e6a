import sys
from pathlib import Path

# Ensure project root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from vcare_access.config import load_config
from vcare_access.db import init_db
from vcare_access.economics.tables import get_role_table


def main() -> None:
    cfg = load_config()
    init_db(cfg.DB_DSN)
    # Fail here rather than at API startup if the configured role tables are broken.
    table = get_role_table(cfg.ROLE_TABLES_VERSION, cfg.ROLE_TABLES_PATH)
    print(f"DB initialized: {cfg.DB_DSN} (role tables {table.version}, {len(table.roles)} roles)")


if __name__ == "__main__":
    main()
